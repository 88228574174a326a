"""Database models and column types."""
