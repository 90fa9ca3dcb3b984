"""Adapters for the ledger, the punchout marketplace and notification delivery."""
