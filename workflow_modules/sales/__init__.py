"""Sales order lifecycle."""
