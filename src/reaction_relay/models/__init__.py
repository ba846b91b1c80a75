# src/reaction_relay/models/__init__.py
"""SQLAlchemy models for the reaction relay."""

from .transaction_queue import (
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    TransactionQueueItem,
    TxKind,
    TxStatus,
)

__all__ = [
    "OPEN_STATUSES",
    "TERMINAL_STATUSES",
    "TransactionQueueItem",
    "TxKind",
    "TxStatus",
]
