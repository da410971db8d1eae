"""Cooperative member ledger: savings, loans, protection dues and certificates."""

__version__ = "0.1.0"
