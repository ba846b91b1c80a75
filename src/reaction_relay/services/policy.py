"""Retry and backoff policies shared by every relay variant.

Failed items are terminal by default: re-submitting a reaction changes the
recorded simulation, so nothing is retried in place. ``RetryPolicy`` is the
opt-in layer that re-enqueues a fresh copy of a failed item while its attempt
count stays under a ceiling. ``BackoffPolicy`` decides how long a wallet
rests after consecutive failures.
"""

from __future__ import annotations

from dataclasses import dataclass

from reaction_relay.core.settings import Settings
from reaction_relay.schemas.queue import QueueItem
from reaction_relay.services.ledger import SubmissionError


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded re-queue of failed submissions.

    Attributes:
        max_attempts: Total relay attempts allowed across an item and its
            re-queued copies. ``1`` disables re-queueing.
    """

    max_attempts: int = 1

    def should_requeue(self, item: QueueItem, error: BaseException) -> bool:
        """Return True if a fresh copy of ``item`` should be enqueued.

        Only transport-class failures qualify; a call that would revert
        fails the same way on every attempt. ``item.attempts`` counts the
        attempt that just failed.
        """
        if self.max_attempts <= 1:
            return False
        if not isinstance(error, SubmissionError):
            return False
        return item.attempts + 1 < self.max_attempts

    @classmethod
    def from_settings(cls, config: Settings) -> RetryPolicy:
        return cls(max_attempts=config.max_attempts)


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential cooldown for a wallet after consecutive errors."""

    base_seconds: float = 0.0
    max_seconds: float = 30.0

    def delay(self, consecutive_errors: int) -> float:
        """Seconds a wallet should skip ticks after ``consecutive_errors`` failures.

        >>> BackoffPolicy(base_seconds=1.0, max_seconds=5.0).delay(3)
        4.0
        >>> BackoffPolicy(base_seconds=1.0, max_seconds=5.0).delay(10)
        5.0
        """
        if self.base_seconds <= 0 or consecutive_errors <= 0:
            return 0.0
        return min(self.base_seconds * 2 ** (consecutive_errors - 1), self.max_seconds)

    @classmethod
    def from_settings(cls, config: Settings) -> BackoffPolicy:
        return cls(
            base_seconds=config.backoff_base_seconds,
            max_seconds=config.backoff_max_seconds,
        )
