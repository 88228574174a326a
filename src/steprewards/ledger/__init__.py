"""Balance ledger and earnings endpoints."""
