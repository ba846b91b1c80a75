# src/reaction_relay/schemas/queue.py
"""Queue-related Pydantic schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from reaction_relay.models import TransactionQueueItem, TxKind, TxStatus

# Payload columns are signed BIGINT, which is narrower than the contract's uint256.
MAX_PAYLOAD_VALUE = 2**63 - 1


class QueueItemCreate(BaseModel):
    """Validated input for a new queue item.

    Reactions carry a position and an energy level that are written as
    ``uint256`` values; explosions only need the entity they concern.
    """

    kind: TxKind = TxKind.REACTION
    entity_id: str | None = Field(None, max_length=256, description="Domain object identifier")
    x: int = Field(0, ge=0, le=MAX_PAYLOAD_VALUE)
    y: int = Field(0, ge=0, le=MAX_PAYLOAD_VALUE)
    energy: int = Field(0, ge=0, le=MAX_PAYLOAD_VALUE)
    timestamp: int | None = Field(None, ge=0, description="Epoch milliseconds; defaults to now")

    @model_validator(mode="after")
    def _check_shape(self) -> QueueItemCreate:
        if self.kind is TxKind.EXPLOSION:
            if not self.entity_id:
                raise ValueError("explosion items require an entity_id")
            # Position and energy are not part of the explosion call.
            self.x = self.y = self.energy = 0
        return self


class ReactionCreate(BaseModel):
    """Request body for enqueueing a reaction."""

    x: int = Field(..., ge=0, le=MAX_PAYLOAD_VALUE)
    y: int = Field(..., ge=0, le=MAX_PAYLOAD_VALUE)
    energy: int = Field(..., ge=0, le=MAX_PAYLOAD_VALUE)
    entity_id: str | None = Field(None, max_length=256)


class ExplosionCreate(BaseModel):
    """Request body for enqueueing an explosion."""

    entity_id: str = Field(..., min_length=1, max_length=256)


class QueueItem(BaseModel):
    """Immutable snapshot of a queue row as seen by the relay."""

    model_config = ConfigDict(frozen=True)

    id: int
    kind: TxKind
    entity_id: str | None = None
    x: int = 0
    y: int = 0
    energy: int = 0
    status: TxStatus = TxStatus.PENDING
    hash: str | None = None
    enqueued_at: int
    attempts: int = 0

    @property
    def payload(self) -> tuple[int, int, int]:
        """Return the ``(x, y, energy)`` tuple marshalled into ledger calls."""
        return (self.x, self.y, self.energy)

    @classmethod
    def from_row(cls, row: TransactionQueueItem) -> QueueItem:
        """Build a snapshot from an ORM row."""
        return cls(
            id=row.id,
            kind=TxKind(row.type),
            entity_id=row.entity_id,
            x=row.x,
            y=row.y,
            energy=row.energy,
            status=TxStatus(row.status),
            hash=row.hash,
            enqueued_at=row.timestamp,
            attempts=row.retries,
        )


class EnqueueResponse(BaseModel):
    """Response returned after enqueueing an item."""

    id: int
    status: TxStatus = TxStatus.PENDING


class QueueStats(BaseModel):
    """Counters exposed for dashboards."""

    pending: int
    leased: int
    sent: int
    failed: int
    explosions: int
