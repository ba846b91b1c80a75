# src/reaction_relay/schemas/__init__.py
"""
Pydantic schemas for queue items, API payloads and relay reports.
"""

from .queue import (
    EnqueueResponse,
    ExplosionCreate,
    QueueItem,
    QueueItemCreate,
    QueueStats,
    ReactionCreate,
)
from .relay import DrainSummary, OutcomeResponse, RelayStatusResponse, WalletStatusResponse

__all__ = [
    "EnqueueResponse", "ExplosionCreate", "QueueItem", "QueueItemCreate",
    "QueueStats", "ReactionCreate",
    "DrainSummary", "OutcomeResponse", "RelayStatusResponse", "WalletStatusResponse",
]
