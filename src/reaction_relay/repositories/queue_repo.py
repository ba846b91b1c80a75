"""Data access for the relay work queue.

The repository is the only shared mutable resource between relay workers.
Claiming a row is a single conditional ``UPDATE ... RETURNING`` so that two
workers polling at the same instant can never receive the same item.
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from typing import Protocol

from pydantic import ValidationError
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reaction_relay.db.time import now_ms
from reaction_relay.models import (
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    TransactionQueueItem,
    TxKind,
    TxStatus,
)
from reaction_relay.schemas.queue import QueueItem, QueueItemCreate

__all__ = [
    "InvalidQueueItem",
    "LeaseLost",
    "StoreError",
    "StoreUnavailable",
    "TransactionQueueRepository",
    "WorkQueueStore",
]

logger = logging.getLogger(__name__)

# Competing claimers can win the oldest row between our subselect and update.
DEFAULT_CLAIM_ATTEMPTS = 3


class StoreError(RuntimeError):
    """Base exception raised for work queue failures."""


class StoreUnavailable(StoreError):
    """Raised when a round-trip to the queue database fails."""


class InvalidQueueItem(ValueError):
    """Raised when an item does not match the argument shape of its kind."""


class LeaseLost(StoreError):
    """An attempt finished after its item was terminal or claimed by another worker."""


class WorkQueueStore(Protocol):
    """Operations the relay requires from the persisted queue."""

    async def enqueue(
        self,
        kind: TxKind | str,
        entity_id: str | None = None,
        payload: Sequence[int] = (0, 0, 0),
        *,
        timestamp: int | None = None,
        attempts: int = 0,
    ) -> int: ...

    async def dequeue_next_pending(self, claimant: int | None = None) -> QueueItem | None: ...

    async def mark(
        self,
        item_id: int,
        status: TxStatus | str,
        tx_hash: str | None = None,
        *,
        claimant: int | None = None,
    ) -> bool: ...

    async def mark_batch(
        self,
        item_ids: Sequence[int],
        status: TxStatus | str,
        hashes: Sequence[str] | None = None,
        *,
        claimant: int | None = None,
    ) -> int: ...

    async def count_pending(self) -> int: ...

    async def purge(self, older_than_ms: int) -> int: ...

    async def release_expired_leases(self, older_than_ms: int) -> int: ...


def _mark_values(status: TxStatus, tx_hash: str | None) -> dict[str, object]:
    if status not in (TxStatus.SENT, TxStatus.FAILED):
        raise ValueError(f"Cannot mark an item as {status.value!r}")
    if status is TxStatus.SENT and not tx_hash:
        raise ValueError("A sent item requires a transaction hash")
    return {
        "status": status.value,
        "hash": tx_hash if status is TxStatus.SENT else None,
        "retries": TransactionQueueItem.retries + 1,
        "leased_by": None,
        "leased_at": None,
    }


def _markable(item_id: int, claimant: int | None) -> list[object]:
    table = TransactionQueueItem
    criteria: list[object] = [table.id == item_id, table.status.in_(OPEN_STATUSES)]
    if claimant is not None:
        # A lease that expired and went to another worker belongs to that worker.
        criteria.append(
            or_(table.status == TxStatus.PENDING.value, table.leased_by == claimant)
        )
    return criteria


class TransactionQueueRepository:
    """SQLAlchemy implementation of the work queue store."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession] | None = None,
        *,
        clock: Callable[[], int] = now_ms,
        claim_attempts: int = DEFAULT_CLAIM_ATTEMPTS,
    ) -> None:
        """Initialize the repository.

        Args:
            sessionmaker: Session factory; defaults to the application factory.
            clock: Returns the current time in epoch milliseconds.
            claim_attempts: How many times a lost claim race is retried.
        """
        if sessionmaker is None:
            from reaction_relay.db.session import SessionLocal

            sessionmaker = SessionLocal
        self._sessionmaker = sessionmaker
        self._clock = clock
        self._claim_attempts = max(1, claim_attempts)

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessionmaker() as session, session.begin():
                yield session
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(f"Queue store request failed: {exc}") from exc

    def now(self) -> int:
        """Return the store clock in epoch milliseconds."""
        return self._clock()

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        kind: TxKind | str,
        entity_id: str | None = None,
        payload: Sequence[int] = (0, 0, 0),
        *,
        timestamp: int | None = None,
        attempts: int = 0,
    ) -> int:
        """Insert a pending item and return its identifier.

        Raises:
            InvalidQueueItem: If the payload does not fit the kind.
            StoreUnavailable: If the database cannot be reached.
        """
        try:
            x, y, energy = payload
            data = QueueItemCreate(
                kind=kind,
                entity_id=entity_id,
                x=x,
                y=y,
                energy=energy,
                timestamp=timestamp,
            )
        except (ValidationError, ValueError, TypeError) as exc:
            raise InvalidQueueItem(str(exc)) from exc

        row = TransactionQueueItem(
            entity_id=data.entity_id,
            x=data.x,
            y=data.y,
            energy=data.energy,
            status=TxStatus.PENDING.value,
            hash=None,
            timestamp=data.timestamp if data.timestamp is not None else self._clock(),
            retries=attempts,
            type=data.kind.value,
        )
        async with self._transaction() as session:
            session.add(row)
            await session.flush()
            item_id = row.id
        logger.debug("Enqueued %s item %s", data.kind.value, item_id)
        return item_id

    async def enqueue_reaction(
        self, x: int, y: int, energy: int, entity_id: str | None = None
    ) -> int:
        """Queue a reaction at ``(x, y)`` with the given energy."""
        return await self.enqueue(TxKind.REACTION, entity_id, (x, y, energy))

    async def enqueue_explosion(self, entity_id: str) -> int:
        """Queue an explosion of ``entity_id``."""
        return await self.enqueue(TxKind.EXPLOSION, entity_id)

    # ------------------------------------------------------------------
    # Consumers
    # ------------------------------------------------------------------

    async def dequeue_next_pending(self, claimant: int | None = None) -> QueueItem | None:
        """Claim the oldest pending item for ``claimant``.

        The row moves to the leased state in the same statement that selects
        it, so each pending item is handed to at most one caller.

        Returns:
            The claimed item, or None when nothing is pending.
        """
        table = TransactionQueueItem
        for _ in range(self._claim_attempts):
            oldest = (
                select(table.id)
                .where(table.status == TxStatus.PENDING.value)
                .order_by(table.timestamp, table.id)
                .limit(1)
                .with_for_update(skip_locked=True)
                .scalar_subquery()
            )
            stmt = (
                update(table)
                .where(table.id == oldest, table.status == TxStatus.PENDING.value)
                .values(
                    status=TxStatus.LEASED.value,
                    leased_by=claimant,
                    leased_at=self._clock(),
                )
                .returning(table)
                .execution_options(synchronize_session=False)
            )
            async with self._transaction() as session:
                row = (await session.execute(stmt)).scalars().first()
                if row is not None:
                    return QueueItem.from_row(row)
                remaining = await session.scalar(
                    select(func.count())
                    .select_from(table)
                    .where(table.status == TxStatus.PENDING.value)
                )
            if not remaining:
                return None
            logger.debug("Lost claim race for claimant %s; retrying", claimant)
        return None

    async def peek_next_pending(self) -> QueueItem | None:
        """Return the oldest pending item without claiming it."""
        table = TransactionQueueItem
        async with self._transaction() as session:
            row = await session.scalar(
                select(table)
                .where(table.status == TxStatus.PENDING.value)
                .order_by(table.timestamp, table.id)
                .limit(1)
            )
            return QueueItem.from_row(row) if row is not None else None

    async def mark(
        self,
        item_id: int,
        status: TxStatus | str,
        tx_hash: str | None = None,
        *,
        claimant: int | None = None,
    ) -> bool:
        """Record the outcome of one relay attempt.

        Only pending or leased rows move; terminal rows are left untouched.
        With ``claimant`` set, a row leased to a different claimant is left
        untouched too.

        Returns:
            True if the row transitioned, False if it was missing, terminal
            or leased to someone else.
        """
        values = _mark_values(TxStatus(status), tx_hash)
        table = TransactionQueueItem
        stmt = (
            update(table)
            .where(*_markable(item_id, claimant))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
        return result.rowcount == 1

    async def mark_batch(
        self,
        item_ids: Sequence[int],
        status: TxStatus | str,
        hashes: Sequence[str] | None = None,
        *,
        claimant: int | None = None,
    ) -> int:
        """Apply :meth:`mark` to several items in one transaction.

        Args:
            item_ids: Items to transition.
            status: Target status for every item.
            hashes: Transaction hashes aligned with ``item_ids`` (sent only).
            claimant: Skip rows leased to anyone else.

        Returns:
            Number of rows that transitioned.
        """
        status = TxStatus(status)
        if hashes is not None and len(hashes) != len(item_ids):
            raise ValueError("hashes must align with item_ids")
        if not item_ids:
            return 0

        table = TransactionQueueItem
        updated = 0
        async with self._transaction() as session:
            for position, item_id in enumerate(item_ids):
                tx_hash = hashes[position] if hashes is not None else None
                result = await session.execute(
                    update(table)
                    .where(*_markable(item_id, claimant))
                    .values(**_mark_values(status, tx_hash))
                    .execution_options(synchronize_session=False)
                )
                updated += result.rowcount
        return updated

    # ------------------------------------------------------------------
    # Maintenance and observability
    # ------------------------------------------------------------------

    async def get(self, item_id: int) -> QueueItem | None:
        """Return a snapshot of one item."""
        async with self._transaction() as session:
            row = await session.get(TransactionQueueItem, item_id)
            return QueueItem.from_row(row) if row is not None else None

    async def count(
        self, status: TxStatus | str = TxStatus.PENDING, kind: TxKind | str | None = None
    ) -> int:
        """Count items with ``status`` (and ``kind`` when given)."""
        table = TransactionQueueItem
        stmt = select(func.count()).select_from(table).where(
            table.status == TxStatus(status).value
        )
        if kind is not None:
            stmt = stmt.where(table.type == TxKind(kind).value)
        async with self._transaction() as session:
            return int(await session.scalar(stmt) or 0)

    async def count_pending(self) -> int:
        """Count items waiting for a relay worker."""
        return await self.count(TxStatus.PENDING)

    async def count_explosions(self) -> int:
        """Count explosions that reached the ledger."""
        return await self.count(TxStatus.SENT, TxKind.EXPLOSION)

    async def counts_by_status(self) -> dict[str, int]:
        """Return item counts keyed by every known status."""
        table = TransactionQueueItem
        counts = {status.value: 0 for status in TxStatus}
        async with self._transaction() as session:
            rows = await session.execute(
                select(table.status, func.count()).group_by(table.status)
            )
            for status, total in rows:
                counts[status] = int(total)
        return counts

    async def purge(self, older_than_ms: int) -> int:
        """Delete terminal items enqueued before ``older_than_ms``.

        Pending and leased rows are never deleted.
        """
        table = TransactionQueueItem
        stmt = (
            delete(table)
            .where(table.status.in_(TERMINAL_STATUSES), table.timestamp < older_than_ms)
            .execution_options(synchronize_session=False)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
        if result.rowcount:
            logger.info("Purged %d terminal queue items", result.rowcount)
        return result.rowcount

    async def release_expired_leases(self, older_than_ms: int) -> int:
        """Return items leased before ``older_than_ms`` to the pending state.

        Covers workers that died between claiming an item and marking it.
        """
        table = TransactionQueueItem
        stmt = (
            update(table)
            .where(
                table.status == TxStatus.LEASED.value,
                table.leased_at < older_than_ms,
            )
            .values(status=TxStatus.PENDING.value, leased_by=None, leased_at=None)
            .execution_options(synchronize_session=False)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
        if result.rowcount:
            logger.warning("Released %d expired queue leases", result.rowcount)
        return result.rowcount
