"""Data access layer for the reaction relay."""

from .queue_repo import (
    InvalidQueueItem,
    LeaseLost,
    StoreError,
    StoreUnavailable,
    TransactionQueueRepository,
    WorkQueueStore,
)

__all__ = [
    "InvalidQueueItem",
    "LeaseLost",
    "StoreError",
    "StoreUnavailable",
    "TransactionQueueRepository",
    "WorkQueueStore",
]
