"""Single-wallet relay loop.

This module provides the RelayLoop class which drains the work queue with one
signing identity, one item per tick, never overlapping ticks.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging

from reaction_relay.repositories.queue_repo import StoreError
from reaction_relay.services.events import Failed, RelayOutcome, Sent
from reaction_relay.services.ledger import Signer
from reaction_relay.services.processor import RelayProcessor
from reaction_relay.services.wallet_pool import WalletState

# Configure logger for this module
logger = logging.getLogger(__name__)


class RelayLoop:
    """Periodically claims the oldest pending item and relays it.

    Ticks fire on a fixed interval. A tick that finds the previous one still
    in flight is skipped, so submissions are issued in strict dequeue order.
    """

    def __init__(
        self,
        processor: RelayProcessor,
        signer: Signer,
        *,
        interval: float = 2.0,
        wallet_index: int = 0,
    ) -> None:
        """Initialize the loop.

        Args:
            processor: Shared per-item processing.
            signer: The wallet that signs every submission.
            interval: Seconds between ticks.
            wallet_index: Identifier recorded on leases and outcomes.
        """
        self.processor = processor
        self.signer = signer
        self.interval = max(0.01, float(interval))
        self.wallet_index = wallet_index
        self._state = WalletState(index=wallet_index, address=getattr(signer, "address", None))
        self._task: asyncio.Task[None] | None = None
        self._current: asyncio.Task[RelayOutcome | None] | None = None
        self._stopping = asyncio.Event()
        self._paused = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def in_flight(self) -> bool:
        return self._state.is_processing

    def snapshot(self) -> WalletState:
        return dataclasses.replace(self._state)

    def reset(self) -> WalletState:
        self._state.consecutive_errors = 0
        return self.snapshot()

    async def start(self) -> None:
        """Start ticking in the background."""
        self._paused = False
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())
            logger.info("Started relay loop for wallet %s", self._state.address)

    async def stop(self) -> None:
        """Stop scheduling ticks and let an in-flight tick finish."""
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None
        if self._current is not None:
            await asyncio.gather(self._current, return_exceptions=True)
            self._current = None
        logger.info("Stopped relay loop")

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            if self._stopping.is_set():
                break
            if not self.in_flight:
                self._current = asyncio.create_task(self.tick())

    async def tick(self) -> RelayOutcome | None:
        """Relay at most one item.

        Returns:
            The outcome, or None when the tick was skipped, the queue was
            empty, or the store was unavailable.
        """
        if self._state.is_processing or self._paused:
            return None

        self._state.is_processing = True
        try:
            try:
                item = await self.processor.store.dequeue_next_pending(self.wallet_index)
            except StoreError as e:
                logger.warning("RelayLoop could not reach the queue store: %s", e)
                return None
            if item is None:
                return None
            outcome = await self.processor.process(item, self.signer, self.wallet_index)
        except Exception as e:
            logger.error("RelayLoop encountered unexpected error: %s", e, exc_info=True)
            return None
        finally:
            self._state.is_processing = False

        if isinstance(outcome, Sent):
            self._state.total_processed += 1
            self._state.consecutive_errors = 0
        elif isinstance(outcome, Failed):
            self._state.total_failed += 1
            self._state.consecutive_errors += 1
        return outcome
