"""Step validation, daily reset and step statistics."""
