"""Typed relay outcomes and the observer interface that consumes them."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Union

from reaction_relay.schemas.queue import QueueItem

if TYPE_CHECKING:
    from reaction_relay.services.wallet_pool import WalletState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Sent:
    """The item's write was accepted by the ledger."""

    item: QueueItem
    tx_hash: str
    wallet_index: int | None = None


@dataclass(frozen=True)
class Failed:
    """The item's write failed; the item is terminal unless re-queued."""

    item: QueueItem
    error: BaseException
    wallet_index: int | None = None
    requeued_id: int | None = None


RelayOutcome = Union[Sent, Failed]


class RelayObserver(Protocol):
    """Receives relay outcomes and wallet status snapshots."""

    def on_outcome(self, outcome: RelayOutcome) -> None: ...

    def on_status(self, snapshot: Sequence[WalletState]) -> None: ...


class LoggingObserver:
    """Observer that writes every outcome to the log."""

    def on_outcome(self, outcome: RelayOutcome) -> None:
        if isinstance(outcome, Sent):
            logger.info(
                "Wallet %s sent %s item %s: %s",
                outcome.wallet_index,
                outcome.item.kind.value,
                outcome.item.id,
                outcome.tx_hash,
            )
        else:
            logger.warning(
                "Wallet %s failed %s item %s: %s",
                outcome.wallet_index,
                outcome.item.kind.value,
                outcome.item.id,
                outcome.error,
            )

    def on_status(self, snapshot: Sequence[WalletState]) -> None:
        logger.debug("Wallet status: %s", snapshot)


class CollectingObserver:
    """Keeps the most recent outcomes and status snapshot in memory."""

    def __init__(self, maxlen: int = 100) -> None:
        self.outcomes: deque[RelayOutcome] = deque(maxlen=maxlen)
        self.status: list[WalletState] = []

    def on_outcome(self, outcome: RelayOutcome) -> None:
        self.outcomes.append(outcome)

    def on_status(self, snapshot: Sequence[WalletState]) -> None:
        self.status = list(snapshot)


def notify_outcome(observers: Sequence[RelayObserver], outcome: RelayOutcome) -> None:
    """Deliver ``outcome`` to each observer; observer errors are logged only."""
    for observer in observers:
        try:
            observer.on_outcome(outcome)
        except Exception:
            logger.exception("Relay observer %r failed on outcome", observer)


def notify_status(observers: Sequence[RelayObserver], snapshot: Sequence[WalletState]) -> None:
    """Deliver a status snapshot to each observer; observer errors are logged only."""
    for observer in observers:
        try:
            observer.on_status(snapshot)
        except Exception:
            logger.exception("Relay observer %r failed on status", observer)
