"""Reaction relay: drains a persisted queue of ledger writes."""

__version__ = "0.1.0"
