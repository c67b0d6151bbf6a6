"""Stage worker process entry point."""
