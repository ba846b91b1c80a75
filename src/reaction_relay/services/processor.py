"""Per-item relay processing shared by the loop, the pool and the scheduled job.

One attempt is: choose the contract call for the item's kind, simulate it as
the wallet's signer, submit it, then record the outcome in the store. Ledger
failures never escape; they become ``Failed`` outcomes.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable

from reaction_relay.models import TxKind, TxStatus
from reaction_relay.repositories.queue_repo import LeaseLost, StoreError, WorkQueueStore
from reaction_relay.schemas.queue import QueueItem
from reaction_relay.services.events import (
    Failed,
    RelayObserver,
    RelayOutcome,
    Sent,
    notify_outcome,
)
from reaction_relay.services.ledger import LedgerCall, LedgerClient, Signer, SubmissionError
from reaction_relay.services.policy import RetryPolicy

logger = logging.getLogger(__name__)

RECORD_REACTION = "recordReaction"
RECORD_EXPLOSION = "recordExplosion"


def build_call(item: QueueItem) -> LedgerCall:
    """Return the contract call that records ``item``.

    Explosions only carry the entity id; reactions carry the position and
    energy followed by the (possibly empty) entity id.
    """
    entity_id = item.entity_id or ""
    if item.kind is TxKind.EXPLOSION:
        return LedgerCall(RECORD_EXPLOSION, (entity_id,))
    if item.kind is TxKind.REACTION:
        return LedgerCall(RECORD_REACTION, (item.x, item.y, item.energy, entity_id))
    raise ValueError(f"Unsupported queue item kind: {item.kind!r}")


class RelayProcessor:
    """Runs relay attempts against a ledger and records them in a store."""

    def __init__(
        self,
        store: WorkQueueStore,
        ledger: LedgerClient,
        *,
        retry_policy: RetryPolicy | None = None,
        observers: Iterable[RelayObserver] = (),
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.retry_policy = retry_policy or RetryPolicy()
        self.observers: list[RelayObserver] = list(observers)

    def add_observer(self, observer: RelayObserver) -> None:
        self.observers.append(observer)

    async def attempt(
        self, item: QueueItem, signer: Signer, wallet_index: int | None = None
    ) -> RelayOutcome:
        """Simulate and submit ``item`` without touching the store."""
        try:
            call = build_call(item)
            request = await self.ledger.simulate(call, signer)
            tx_hash = await self.ledger.submit(request)
            if not tx_hash:
                raise SubmissionError(
                    f"Ledger returned no transaction hash for {call.function_name}"
                )
        except Exception as exc:
            return Failed(item=item, error=exc, wallet_index=wallet_index)
        return Sent(item=item, tx_hash=tx_hash, wallet_index=wallet_index)

    async def process(
        self, item: QueueItem, signer: Signer, wallet_index: int | None = None
    ) -> RelayOutcome:
        """Attempt ``item`` and record the outcome."""
        outcome = await self.attempt(item, signer, wallet_index)
        return await self.record(outcome)

    async def record(self, outcome: RelayOutcome) -> RelayOutcome:
        """Mark the item, apply the retry policy and notify observers.

        The mark is made on behalf of ``outcome.wallet_index``. If the item
        was terminal already or its lease went to another worker, the attempt
        is reported as a ``Failed`` carrying ``LeaseLost`` and is never
        re-queued.
        """
        if isinstance(outcome, Sent):
            marked = await self._safe_mark(outcome, TxStatus.SENT, outcome.tx_hash)
        else:
            marked = await self._safe_mark(outcome, TxStatus.FAILED)

        if marked is False:
            outcome = _superseded(outcome)
        elif isinstance(outcome, Failed):
            outcome = await self._apply_retry(outcome)
        notify_outcome(self.observers, outcome)
        return outcome

    async def _apply_retry(self, outcome: Failed) -> Failed:
        item = outcome.item
        if not self.retry_policy.should_requeue(item, outcome.error):
            return outcome
        try:
            requeued_id = await self.store.enqueue(
                item.kind,
                item.entity_id,
                item.payload,
                attempts=item.attempts + 1,
            )
        except StoreError as exc:
            logger.warning("Could not re-queue failed item %s: %s", item.id, exc)
            return outcome
        logger.info("Re-queued failed item %s as %s", item.id, requeued_id)
        return dataclasses.replace(outcome, requeued_id=requeued_id)

    async def _safe_mark(
        self, outcome: RelayOutcome, status: TxStatus, tx_hash: str | None = None
    ) -> bool | None:
        """Mark the outcome's item; ``None`` means the store was unreachable."""
        item = outcome.item
        try:
            marked = await self.store.mark(
                item.id, status, tx_hash, claimant=outcome.wallet_index
            )
        except StoreError as exc:
            logger.warning("Failed to mark item %s as %s: %s", item.id, status.value, exc)
            return None
        if not marked:
            logger.warning(
                "Item %s is no longer open to wallet %s; %s not recorded",
                item.id,
                outcome.wallet_index,
                status.value,
            )
        return bool(marked)


def _superseded(outcome: RelayOutcome) -> Failed:
    if isinstance(outcome, Failed):
        return outcome
    error = LeaseLost(
        f"Item {outcome.item.id} was settled elsewhere after {outcome.tx_hash} was sent"
    )
    return Failed(item=outcome.item, error=error, wallet_index=outcome.wallet_index)
