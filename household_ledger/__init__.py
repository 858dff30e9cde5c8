"""Household ledger backend."""
