"""Multi-wallet relay pool.

Each configured signing key gets a ``WalletWorker``: a small actor that owns
its wallet's counters and accepts messages on a mailbox. A ticker task posts
``_Tick`` messages on the wallet's own staggered interval, and relay cycles
post their result back as ``_Completed``. All state changes happen inside the
actor, so a wallet never runs two cycles at once and snapshots are consistent.

Wallets share the queue store; the store's atomic claim keeps two wallets from
ever relaying the same item.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from reaction_relay.repositories.queue_repo import StoreError
from reaction_relay.services.events import (
    Failed,
    RelayObserver,
    RelayOutcome,
    Sent,
    notify_status,
)
from reaction_relay.services.ledger import Signer
from reaction_relay.services.policy import BackoffPolicy
from reaction_relay.services.processor import RelayProcessor

logger = logging.getLogger(__name__)


@dataclass
class WalletState:
    """Counters for one wallet.

    ``index`` is the wallet's position in the configured key list, so a
    skipped malformed key never shifts the indexes of the others.
    """

    index: int
    address: str | None = None
    is_processing: bool = False
    total_processed: int = 0
    total_failed: int = 0
    consecutive_errors: int = 0
    circuit_open: bool = False


@dataclass
class _Tick:
    reply: asyncio.Future[RelayOutcome | None] | None = None


@dataclass
class _Completed:
    outcome: RelayOutcome | None
    reply: asyncio.Future[RelayOutcome | None] | None = None


@dataclass
class _Snapshot:
    reply: asyncio.Future[WalletState]


@dataclass
class _Reset:
    reply: asyncio.Future[WalletState] | None = None


@dataclass
class _SetPaused:
    paused: bool


class _Stop:
    pass


class WalletWorker:
    """Actor driving one wallet's relay cycles."""

    def __init__(
        self,
        index: int,
        signer: Signer,
        processor: RelayProcessor,
        *,
        interval: float,
        error_ceiling: int = 5,
        backoff: BackoffPolicy | None = None,
        publish: Callable[[WalletState], None] | None = None,
    ) -> None:
        self.index = index
        self.interval = max(0.01, float(interval))
        self.error_ceiling = error_ceiling
        self._signer = signer
        self._processor = processor
        self._backoff = backoff or BackoffPolicy()
        self._publish = publish
        self._state = WalletState(index=index, address=getattr(signer, "address", None))
        self._mailbox: asyncio.Queue[Any] = asyncio.Queue()
        self._paused = False
        self._stopped = False
        self._cooldown_until = 0.0
        self._actor: asyncio.Task[None] | None = None
        self._ticker: asyncio.Task[None] | None = None
        self._cycle: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._actor is not None and not self._actor.done()

    @property
    def address(self) -> str | None:
        return self._state.address

    def copy_state(self) -> WalletState:
        return dataclasses.replace(self._state)

    async def start(self) -> None:
        if self.is_running:
            return
        self._stopped = False
        self._actor = asyncio.create_task(self._run(), name=f"wallet-{self.index}")
        self._ticker = asyncio.create_task(self._tick_timer(), name=f"wallet-{self.index}-ticker")

    async def stop(self) -> None:
        """Stop ticking; an in-flight cycle is allowed to finish and is recorded."""
        if self._ticker is not None:
            self._ticker.cancel()
            await asyncio.gather(self._ticker, return_exceptions=True)
            self._ticker = None
        if self._actor is not None:
            self._mailbox.put_nowait(_Stop())
            await self._actor
            self._actor = None
        self._stopped = True
        if self._cycle is not None:
            await asyncio.gather(self._cycle, return_exceptions=True)
        while not self._mailbox.empty():
            message = self._mailbox.get_nowait()
            if not isinstance(message, _Stop):
                self._handle(message)

    async def tick(self) -> RelayOutcome | None:
        """Request one cycle and wait for it.

        Returns None when the wallet declined the tick or found nothing to do.
        """
        reply = self._post_with_reply(_Tick)
        return await reply

    async def snapshot(self) -> WalletState:
        if not self.is_running:
            return self.copy_state()
        return await self._post_with_reply(_Snapshot)

    async def reset(self) -> WalletState:
        """Clear the wallet's error streak and close its circuit."""
        if not self.is_running:
            self._apply_reset()
            return self.copy_state()
        return await self._post_with_reply(_Reset)

    def set_paused(self, paused: bool) -> None:
        if self.is_running:
            self._mailbox.put_nowait(_SetPaused(paused))
        else:
            self._paused = paused

    def _post_with_reply(self, message_type: Callable[..., Any]) -> asyncio.Future[Any]:
        if not self.is_running:
            raise RuntimeError(f"Wallet {self.index} is not running")
        reply = asyncio.get_running_loop().create_future()
        self._mailbox.put_nowait(message_type(reply=reply))
        return reply

    async def _tick_timer(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self._mailbox.put_nowait(_Tick())

    async def _run(self) -> None:
        while True:
            message = await self._mailbox.get()
            if isinstance(message, _Stop):
                return
            try:
                self._handle(message)
            except Exception:
                logger.exception("Wallet %d failed to handle %r", self.index, message)

    def _handle(self, message: Any) -> None:
        if isinstance(message, _Tick):
            self._begin_cycle(message.reply)
        elif isinstance(message, _Completed):
            self._complete(message)
        elif isinstance(message, _Snapshot):
            _resolve(message.reply, self.copy_state())
        elif isinstance(message, _Reset):
            self._apply_reset()
            _resolve(message.reply, self.copy_state())
        elif isinstance(message, _SetPaused):
            self._paused = message.paused

    def _can_tick(self) -> bool:
        state = self._state
        if self._stopped or self._paused or state.is_processing:
            return False
        if state.consecutive_errors >= self.error_ceiling:
            return False
        return asyncio.get_running_loop().time() >= self._cooldown_until

    def _begin_cycle(self, reply: asyncio.Future[RelayOutcome | None] | None) -> None:
        if not self._can_tick():
            _resolve(reply, None)
            return
        self._state.is_processing = True
        self._emit()
        self._cycle = asyncio.create_task(self._run_cycle(reply))

    async def _run_cycle(self, reply: asyncio.Future[RelayOutcome | None] | None) -> None:
        outcome: RelayOutcome | None = None
        try:
            item = await self._processor.store.dequeue_next_pending(self.index)
            if item is not None:
                outcome = await self._processor.process(item, self._signer, self.index)
        except StoreError as e:
            logger.warning("Wallet %d could not reach the queue store: %s", self.index, e)
        except Exception as e:
            logger.error("Wallet %d cycle failed unexpectedly: %s", self.index, e, exc_info=True)
        finally:
            self._mailbox.put_nowait(_Completed(outcome, reply))

    def _complete(self, message: _Completed) -> None:
        state = self._state
        self._cycle = None
        state.is_processing = False
        outcome = message.outcome
        if isinstance(outcome, Sent):
            state.total_processed += 1
            state.consecutive_errors = 0
            self._cooldown_until = 0.0
        elif isinstance(outcome, Failed):
            state.total_failed += 1
            state.consecutive_errors += 1
            delay = self._backoff.delay(state.consecutive_errors)
            if delay:
                self._cooldown_until = asyncio.get_running_loop().time() + delay
            if state.consecutive_errors >= self.error_ceiling and not state.circuit_open:
                state.circuit_open = True
                logger.warning(
                    "Wallet %d circuit open after %d consecutive errors",
                    self.index,
                    state.consecutive_errors,
                )
        self._emit()
        _resolve(message.reply, outcome)

    def _apply_reset(self) -> None:
        self._state.consecutive_errors = 0
        self._state.circuit_open = False
        self._cooldown_until = 0.0
        logger.info("Wallet %d reset", self.index)
        self._emit()

    def _emit(self) -> None:
        if self._publish is not None:
            self._publish(self.copy_state())


def _resolve(future: asyncio.Future[Any] | None, value: Any) -> None:
    if future is not None and not future.done():
        future.set_result(value)


class MultiWalletPool:
    """Drains the queue with several wallets in parallel.

    Wallet ``i`` ticks every ``base_interval + i * stagger`` seconds. A
    wallet whose consecutive errors reach ``error_ceiling`` stops ticking
    until it is reset.
    """

    def __init__(
        self,
        processor: RelayProcessor,
        signers: Sequence[Signer | None],
        *,
        base_interval: float = 0.1,
        stagger: float = 0.05,
        error_ceiling: int = 5,
        backoff: BackoffPolicy | None = None,
        observers: Iterable[RelayObserver] = (),
    ) -> None:
        self.processor = processor
        self.observers: list[RelayObserver] = list(observers)
        for observer in self.observers:
            if observer not in processor.observers:
                processor.add_observer(observer)
        self.workers: list[WalletWorker] = [
            WalletWorker(
                index,
                signer,
                processor,
                interval=base_interval + index * stagger,
                error_ceiling=error_ceiling,
                backoff=backoff,
                publish=self._on_wallet_state,
            )
            for index, signer in enumerate(signers)
            if signer is not None
        ]
        if len(self.workers) < len(signers):
            logger.warning(
                "%d of %d configured wallets could not be used",
                len(signers) - len(self.workers),
                len(signers),
            )
        self._latest: dict[int, WalletState] = {
            worker.index: worker.copy_state() for worker in self.workers
        }
        self._running = False
        self._paused = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def latest_status(self) -> list[WalletState]:
        """Most recently published wallet states, without waiting on any wallet."""
        return [self._latest[index] for index in sorted(self._latest)]

    def worker(self, index: int) -> WalletWorker:
        for worker in self.workers:
            if worker.index == index:
                return worker
        raise IndexError(f"No wallet at index {index}")

    async def start(self) -> None:
        if self._running:
            return
        if not self.workers:
            logger.error("No usable wallets configured; pool not started")
            return
        self._paused = False
        for worker in self.workers:
            worker.set_paused(False)
            await worker.start()
        self._running = True
        logger.info("Started wallet pool with %d wallets", len(self.workers))

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        await asyncio.gather(*(worker.stop() for worker in self.workers))
        logger.info("Stopped wallet pool")

    def pause(self) -> None:
        """Skip every wallet's future ticks; in-flight cycles still finish."""
        self._paused = True
        for worker in self.workers:
            worker.set_paused(True)

    def resume(self) -> None:
        self._paused = False
        for worker in self.workers:
            worker.set_paused(False)

    async def reset_wallet(self, index: int) -> WalletState:
        return await self.worker(index).reset()

    async def tick_wallet(self, index: int) -> RelayOutcome | None:
        return await self.worker(index).tick()

    async def status(self) -> list[WalletState]:
        """Consistent per-wallet snapshot, asked of each wallet in turn."""
        return list(await asyncio.gather(*(worker.snapshot() for worker in self.workers)))

    def _on_wallet_state(self, state: WalletState) -> None:
        self._latest[state.index] = state
        if self.observers:
            # Observers run on a later loop iteration so a slow one never delays a wallet.
            asyncio.get_running_loop().call_soon(
                notify_status, list(self.observers), self.latest_status
            )
