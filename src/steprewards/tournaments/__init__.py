"""Tournament engine."""
