"""Completion effects: ledger sync and marketplace order placement."""
