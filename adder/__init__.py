"""Cardano chain-sync events, ledger helpers, event filters and chain-sync input."""

__version__ = "0.1.0"