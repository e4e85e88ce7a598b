"""Shared expense ledger: balances, smart split and settlement."""
