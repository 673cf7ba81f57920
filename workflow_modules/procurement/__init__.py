"""Purchase order lifecycle."""
