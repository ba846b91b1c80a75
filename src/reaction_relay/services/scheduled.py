"""Scheduled drain-and-sweep job.

Invoked by an external scheduler (the cron endpoint or ``reaction-relay
drain``). One pass relays up to ``batch_ceiling`` items serially with a single
signer, marking each one as soon as its attempt finishes, then returns stale
leases to the queue and deletes terminal rows older than the retention window.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from reaction_relay.repositories.queue_repo import StoreError, WorkQueueStore
from reaction_relay.schemas.relay import DrainSummary
from reaction_relay.services.events import Sent
from reaction_relay.services.ledger import Signer
from reaction_relay.services.processor import RelayProcessor

logger = logging.getLogger(__name__)

DEFAULT_BATCH_CEILING = 20
DEFAULT_RETENTION_WINDOW_SECONDS = 3600
DEFAULT_LEASE_TIMEOUT_SECONDS = 300


async def run_scheduled_job(
    store: WorkQueueStore,
    processor: RelayProcessor,
    signer: Signer,
    *,
    batch_ceiling: int = DEFAULT_BATCH_CEILING,
    retention_window_seconds: int = DEFAULT_RETENTION_WINDOW_SECONDS,
    lease_timeout_seconds: int = DEFAULT_LEASE_TIMEOUT_SECONDS,
    now_ms: int | None = None,
) -> DrainSummary:
    """Run one drain pass followed by lease recovery and retention purge.

    Args:
        store: Queue store to drain.
        processor: Performs and records each attempt.
        signer: The single wallet used for the whole pass.
        batch_ceiling: Maximum number of items attempted in this pass.
        retention_window_seconds: Terminal rows older than this are deleted.
        lease_timeout_seconds: Leased rows older than this return to pending.
        now_ms: Reference time in epoch milliseconds; defaults to the store clock.

    Returns:
        A ``DrainSummary`` for the pass.

    Raises:
        StoreError: The queue could not be read. Items attempted before the
            failure are already recorded.
    """
    processed = 0
    failed = 0
    for _ in range(max(0, batch_ceiling)):
        item = await store.dequeue_next_pending()
        if item is None:
            logger.info("No more pending transactions")
            break
        # Marked right away so a killed pass leaves at most one item leased.
        outcome = await processor.process(item, signer)
        if isinstance(outcome, Sent):
            processed += 1
        else:
            failed += 1

    logger.info("Completed processing %d transactions (%d failed)", processed, failed)

    reference = now_ms if now_ms is not None else _store_now(store)
    released = 0
    purged = 0
    try:
        released = await store.release_expired_leases(reference - lease_timeout_seconds * 1000)
    except StoreError as e:
        logger.warning("Could not release expired leases: %s", e)
    try:
        purged = await store.purge(reference - retention_window_seconds * 1000)
    except StoreError as e:
        logger.warning("Could not purge old transactions: %s", e)
    if released or purged:
        logger.info("Released %d stale leases, purged %d old transactions", released, purged)

    return DrainSummary(
        processed_count=processed,
        failed_count=failed,
        purged_count=purged,
        released_count=released,
        timestamp=datetime.now(UTC),
    )


def _store_now(store: WorkQueueStore) -> int:
    clock = getattr(store, "now", None)
    if callable(clock):
        return int(clock())
    return int(datetime.now(UTC).timestamp() * 1000)
