"""Budget ledger models and service."""
