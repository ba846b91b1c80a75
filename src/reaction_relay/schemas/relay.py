# src/reaction_relay/schemas/relay.py
"""Relay status and job summary schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class WalletStatusResponse(BaseModel):
    """Published state of one signing wallet."""

    index: int
    address: str | None = None
    is_processing: bool
    total_processed: int
    total_failed: int = 0
    consecutive_errors: int
    circuit_open: bool = False


class RelayStatusResponse(BaseModel):
    """Overall relay status for observability endpoints."""

    mode: str
    running: bool
    paused: bool
    wallets: list[WalletStatusResponse] = Field(default_factory=list)


class OutcomeResponse(BaseModel):
    """One recorded relay outcome."""

    item_id: int
    kind: str
    wallet_index: int | None
    sent: bool
    tx_hash: str | None = None
    error: str | None = None


class DrainSummary(BaseModel):
    """Result of one scheduled drain-and-sweep pass."""

    processed_count: int = 0
    failed_count: int = 0
    purged_count: int = 0
    released_count: int = 0
    timestamp: datetime
