"""Relay components assembled from settings.

``RelayRuntime`` ties the queue store, the ledger client and either the
single-wallet loop or the multi-wallet pool together, and is what the HTTP
surface and the CLI drive.
"""

from __future__ import annotations

import logging

from reaction_relay.core.settings import Settings, settings
from reaction_relay.repositories.queue_repo import TransactionQueueRepository, WorkQueueStore
from reaction_relay.schemas.relay import DrainSummary
from reaction_relay.services.events import CollectingObserver, LoggingObserver
from reaction_relay.services.ledger import (
    LedgerClient,
    LedgerError,
    Signer,
    Web3LedgerClient,
    load_signers,
)
from reaction_relay.services.policy import BackoffPolicy, RetryPolicy
from reaction_relay.services.processor import RelayProcessor
from reaction_relay.services.relay_loop import RelayLoop
from reaction_relay.services.scheduled import run_scheduled_job
from reaction_relay.services.wallet_pool import MultiWalletPool, WalletState

logger = logging.getLogger(__name__)


class RelayRuntime:
    """Owns one configured relay and its shared collaborators."""

    def __init__(
        self,
        store: WorkQueueStore,
        ledger: LedgerClient,
        processor: RelayProcessor,
        *,
        config: Settings,
        signer: Signer | None = None,
        loop: RelayLoop | None = None,
        pool: MultiWalletPool | None = None,
        collector: CollectingObserver | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.processor = processor
        self.config = config
        self.signer = signer
        self.loop = loop
        self.pool = pool
        self.collector = collector or CollectingObserver()

    @property
    def mode(self) -> str:
        return "pool" if self.pool is not None else "single"

    @property
    def running(self) -> bool:
        if self.pool is not None:
            return self.pool.is_running
        return self.loop is not None and self.loop.is_running

    @property
    def paused(self) -> bool:
        if self.pool is not None:
            return self.pool.paused
        return self.loop is not None and self.loop.paused

    async def start(self) -> None:
        if self.pool is not None:
            await self.pool.start()
        elif self.loop is not None:
            await self.loop.start()
        else:
            logger.error("No usable signing wallet configured; relay not started")

    async def stop(self) -> None:
        if self.pool is not None:
            await self.pool.stop()
        if self.loop is not None:
            await self.loop.stop()

    def pause(self) -> None:
        if self.pool is not None:
            self.pool.pause()
        if self.loop is not None:
            self.loop.pause()

    def resume(self) -> None:
        if self.pool is not None:
            self.pool.resume()
        if self.loop is not None:
            self.loop.resume()

    async def wallets(self) -> list[WalletState]:
        if self.pool is not None:
            return await self.pool.status()
        if self.loop is not None:
            return [self.loop.snapshot()]
        return []

    async def reset_wallet(self, index: int) -> WalletState:
        """Close a wallet's circuit and clear its error streak.

        Raises:
            IndexError: No wallet is configured at ``index``.
        """
        if self.pool is not None:
            return await self.pool.reset_wallet(index)
        if self.loop is not None and self.loop.wallet_index == index:
            return self.loop.reset()
        raise IndexError(f"No wallet at index {index}")

    async def drain(self) -> DrainSummary:
        """Run one scheduled drain-and-sweep pass with the single signer.

        Raises:
            LedgerError: No signing key is configured.
        """
        if self.signer is None:
            raise LedgerError("PRIVATE_KEY is not configured")
        return await run_scheduled_job(
            self.store,
            self.processor,
            self.signer,
            batch_ceiling=self.config.batch_ceiling,
            retention_window_seconds=self.config.retention_window_seconds,
            lease_timeout_seconds=self.config.lease_timeout_seconds,
        )

    async def close(self) -> None:
        await self.stop()
        close = getattr(self.ledger, "close", None)
        if close is not None:
            await close()


def build_relay(
    config: Settings | None = None,
    *,
    store: WorkQueueStore | None = None,
    ledger: LedgerClient | None = None,
    signers: list[Signer | None] | None = None,
) -> RelayRuntime:
    """Assemble a ``RelayRuntime`` from settings.

    Raises:
        LedgerError: No ledger was given and no contract address is configured.
    """
    config = config or settings
    store = store or TransactionQueueRepository()
    ledger = ledger or Web3LedgerClient.from_settings(config)
    if signers is None:
        signers = list(load_signers(config.signing_keys))

    collector = CollectingObserver()
    observers = [LoggingObserver(), collector]
    processor = RelayProcessor(
        store,
        ledger,
        retry_policy=RetryPolicy.from_settings(config),
        observers=observers,
    )

    single_signer: Signer | None = None
    if config.private_key:
        single_signer = next(iter(load_signers([config.private_key])), None)
    if single_signer is None:
        single_signer = next((signer for signer in signers if signer is not None), None)

    loop: RelayLoop | None = None
    pool: MultiWalletPool | None = None
    if config.relay_mode == "pool":
        pool = MultiWalletPool(
            processor,
            signers,
            base_interval=config.pool_base_interval_seconds,
            stagger=config.pool_stagger_seconds,
            error_ceiling=config.max_consecutive_errors,
            backoff=BackoffPolicy.from_settings(config),
            observers=observers,
        )
    elif single_signer is not None:
        loop = RelayLoop(processor, single_signer, interval=config.poll_interval_seconds)

    return RelayRuntime(
        store,
        ledger,
        processor,
        config=config,
        signer=single_signer,
        loop=loop,
        pool=pool,
        collector=collector,
    )


class _RelayRuntimeSingleton:
    """Singleton wrapper for RelayRuntime."""

    _instance: RelayRuntime | None = None

    @classmethod
    def get_instance(cls) -> RelayRuntime:
        """Get or create the singleton RelayRuntime instance."""
        if cls._instance is None:
            cls._instance = build_relay()
        return cls._instance

    @classmethod
    def set_instance(cls, runtime: RelayRuntime | None) -> None:
        cls._instance = runtime


def get_relay_runtime() -> RelayRuntime:
    """Return a singleton relay runtime instance."""
    return _RelayRuntimeSingleton.get_instance()


def set_relay_runtime(runtime: RelayRuntime | None) -> None:
    """Replace the singleton; ``None`` forces a rebuild on next access."""
    _RelayRuntimeSingleton.set_instance(runtime)


def relay_enabled() -> bool:
    """Return True if the background relay should run in this process."""
    return settings.relay_enabled
