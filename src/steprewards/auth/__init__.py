"""Token verification and caller dependencies."""
