# src/reaction_relay/models/transaction_queue.py
"""SQLAlchemy model for the persisted relay work queue."""

from enum import Enum

from sqlalchemy import VARCHAR, BigInteger, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from reaction_relay.db.session import Base


class TxStatus(str, Enum):
    """Lifecycle of a queue row.

    ``LEASED`` is internal to the store: a row claimed by one relay worker
    that has not been marked yet.
    """

    PENDING = "pending"
    LEASED = "leased"
    SENT = "sent"
    FAILED = "failed"


class TxKind(str, Enum):
    """Domain event kinds accepted by the relay."""

    REACTION = "reaction"
    EXPLOSION = "explosion"


OPEN_STATUSES = (TxStatus.PENDING.value, TxStatus.LEASED.value)
TERMINAL_STATUSES = (TxStatus.SENT.value, TxStatus.FAILED.value)


class TransactionQueueItem(Base):
    """One domain event waiting to be written to the ledger."""

    __tablename__ = "transaction_queue"
    __table_args__ = (Index("ix_transaction_queue_status_timestamp", "status", "timestamp"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    x: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    y: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    energy: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        VARCHAR(16), nullable=False, default=TxStatus.PENDING.value
    )
    # Set only once the row is sent.
    hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Epoch milliseconds; drives FIFO order and retention sweeps.
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    retries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    type: Mapped[str] = mapped_column(
        VARCHAR(16), nullable=False, default=TxKind.REACTION.value
    )
    leased_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    leased_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
