"""Return merchandise authorization lifecycle."""
