"""Relay services: ledger access, per-item processing and the relay drivers."""

from .events import CollectingObserver, Failed, LoggingObserver, RelayObserver, RelayOutcome, Sent
from .ledger import LedgerClient, LedgerError, SimulationError, SubmissionError, Web3LedgerClient
from .policy import BackoffPolicy, RetryPolicy
from .processor import RelayProcessor
from .relay_loop import RelayLoop
from .scheduled import run_scheduled_job
from .wallet_pool import MultiWalletPool, WalletState, WalletWorker

__all__ = [
    "BackoffPolicy",
    "CollectingObserver",
    "Failed",
    "LedgerClient",
    "LedgerError",
    "LoggingObserver",
    "MultiWalletPool",
    "RelayLoop",
    "RelayObserver",
    "RelayOutcome",
    "RelayProcessor",
    "RetryPolicy",
    "Sent",
    "SimulationError",
    "SubmissionError",
    "WalletState",
    "WalletWorker",
    "Web3LedgerClient",
    "run_scheduled_job",
]
