"""Cashout request and review workflow."""
