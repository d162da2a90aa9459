"""Utilities package for the operations ledger."""
