"""Persistence backends for the budget ledger."""
