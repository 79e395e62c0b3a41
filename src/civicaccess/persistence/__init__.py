"""Persistence layer — append-only journal for the access ledger."""
