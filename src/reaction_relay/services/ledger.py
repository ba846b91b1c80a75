"""Ledger client used by the relay to write queue items on-chain.

This module wraps the contract that records reactions and explosions. It
includes:

- The contract ABI and the call shapes for each event kind
- A ``LedgerClient`` protocol describing what the relay needs
- A web3-backed implementation with request timeouts and local signing
- Metrics collection for monitoring
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError

from reaction_relay.core.settings import Settings, settings

# Configure logger for this module
logger = logging.getLogger(__name__)

T = TypeVar("T")

CONTRACT_ABI: list[dict[str, Any]] = [
    {
        "name": "recordReaction",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "_x", "type": "uint256"},
            {"name": "_y", "type": "uint256"},
            {"name": "_energy", "type": "uint256"},
            {"name": "_atomId", "type": "string"},
        ],
        "outputs": [],
    },
    {
        "name": "recordExplosion",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "_atomId", "type": "string"}],
        "outputs": [],
    },
]


class LedgerError(RuntimeError):
    """Base exception raised for ledger failures."""


class SimulationError(LedgerError):
    """Raised when a prepared call would revert.

    The relay treats this as a terminal failure for the item.
    """


class SubmissionError(LedgerError):
    """Raised when broadcasting fails (transport, nonce, rate limit, timeout)."""


class Signer(Protocol):
    """Signing identity; satisfied by ``eth_account`` local accounts."""

    @property
    def address(self) -> str: ...

    def sign_transaction(self, transaction_dict: Mapping[str, Any]) -> Any: ...


@dataclass(frozen=True)
class LedgerCall:
    """Contract function and positional arguments for one write."""

    function_name: str
    args: tuple[Any, ...]


@dataclass(frozen=True)
class PreparedRequest:
    """A simulated call ready to be signed and broadcast."""

    call: LedgerCall
    signer: Signer
    transaction: Mapping[str, Any]


class LedgerClient(Protocol):
    """Operations the relay requires from the ledger."""

    async def simulate(self, call: LedgerCall, signer: Signer) -> PreparedRequest: ...

    async def submit(self, request: PreparedRequest) -> str: ...

    async def read(self, function_name: str, *args: Any) -> Any: ...

    async def balance_of(self, address: str) -> int: ...


@dataclass
class LedgerMetrics:
    """Metrics collection for ledger operations."""

    request_count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_response_time: float = 0.0
    min_response_time: float = float("inf")
    max_response_time: float = 0.0
    error_counts_by_type: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    function_counts: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def record_request(
        self, operation: str, response_time: float, success: bool, error_type: str | None = None
    ) -> None:
        """Record a request metric."""
        self.request_count += 1
        self.total_response_time += response_time
        self.min_response_time = min(self.min_response_time, response_time)
        self.max_response_time = max(self.max_response_time, response_time)
        self.function_counts[operation] += 1

        if success:
            self.success_count += 1
        else:
            self.error_count += 1
            if error_type:
                self.error_counts_by_type[error_type] += 1

    def get_average_response_time(self) -> float:
        """Get average response time."""
        return self.total_response_time / self.request_count if self.request_count > 0 else 0.0

    def get_success_rate(self) -> float:
        """Get success rate as a percentage."""
        return (self.success_count / self.request_count * 100) if self.request_count > 0 else 0.0


def load_signers(private_keys: Sequence[str]) -> list[LocalAccount | None]:
    """Derive signing accounts, keeping each key's position.

    Malformed or empty keys are logged and yield ``None`` so that wallet
    indexes keep matching the configured list.
    """
    signers: list[LocalAccount | None] = []
    for index, key in enumerate(private_keys):
        if not key:
            signers.append(None)
            continue
        try:
            signers.append(Account.from_key(key))
        except (ValueError, TypeError) as exc:
            logger.error("Failed to initialize wallet %d: %s", index, exc)
            signers.append(None)
    return signers


class Web3LedgerClient:
    """Contract client backed by an async web3 HTTP provider."""

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        *,
        chain_id: int | None = None,
        abi: Sequence[Mapping[str, Any]] = CONTRACT_ABI,
        timeout_seconds: float = 30.0,
        web3: AsyncWeb3 | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._chain_id = chain_id
        # Every RPC round-trip is bounded by asyncio.wait_for in _timed.
        self._w3 = web3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self._contract = self._w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=list(abi),
        )
        self._metrics = LedgerMetrics()

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> Web3LedgerClient:
        """Build a client from application settings."""
        config = config or settings
        if not config.contract_address:
            raise LedgerError("CONTRACT_ADDRESS is not configured")
        return cls(
            config.rpc_url,
            config.contract_address,
            chain_id=config.chain_id,
            timeout_seconds=config.rpc_timeout_seconds,
        )

    @property
    def metrics(self) -> LedgerMetrics:
        return self._metrics

    async def _timed(self, operation: str, awaitable: Awaitable[T]) -> T:
        start_time = time.monotonic()
        success = False
        error_type: str | None = None
        try:
            result = await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
            success = True
            return result
        except asyncio.TimeoutError:
            error_type = "timeout"
            raise
        except ContractLogicError:
            error_type = "revert"
            raise
        except Exception:
            error_type = "rpc_error"
            raise
        finally:
            self._metrics.record_request(
                operation, time.monotonic() - start_time, success, error_type
            )

    async def _prepare(self, call: LedgerCall, signer: Signer) -> dict[str, Any]:
        function = getattr(self._contract.functions, call.function_name)(*call.args)
        # Dry run first so that reverts surface before a nonce is reserved.
        await function.call({"from": signer.address})
        chain_id = self._chain_id if self._chain_id is not None else await self._w3.eth.chain_id
        nonce = await self._w3.eth.get_transaction_count(signer.address, "pending")
        return await function.build_transaction(
            {"from": signer.address, "chainId": chain_id, "nonce": nonce}
        )

    async def simulate(self, call: LedgerCall, signer: Signer) -> PreparedRequest:
        """Dry-run ``call`` as ``signer`` and return a request ready to submit.

        Raises:
            SimulationError: The call would revert.
            SubmissionError: The node could not be reached in time.
        """
        try:
            transaction = await self._timed(call.function_name, self._prepare(call, signer))
        except ContractLogicError as exc:
            raise SimulationError(f"{call.function_name} would revert: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise SubmissionError(f"Simulation of {call.function_name} timed out") from exc
        except Exception as exc:
            raise SubmissionError(f"Simulation of {call.function_name} failed: {exc}") from exc
        return PreparedRequest(call=call, signer=signer, transaction=transaction)

    async def submit(self, request: PreparedRequest) -> str:
        """Sign and broadcast a prepared request, returning the transaction hash.

        Raises:
            SubmissionError: Broadcasting failed or timed out.
        """
        signed = request.signer.sign_transaction(dict(request.transaction))
        try:
            tx_hash = await self._timed(
                "send_raw_transaction", self._w3.eth.send_raw_transaction(signed.raw_transaction)
            )
        except asyncio.TimeoutError as exc:
            raise SubmissionError("Broadcast timed out") from exc
        except Exception as exc:
            raise SubmissionError(f"Broadcast failed: {exc}") from exc
        return Web3.to_hex(tx_hash)

    async def read(self, function_name: str, *args: Any) -> Any:
        """Call a read-only contract function."""
        function = getattr(self._contract.functions, function_name)(*args)
        try:
            return await self._timed(function_name, function.call())
        except Exception as exc:
            raise LedgerError(f"Read of {function_name} failed: {exc}") from exc

    async def balance_of(self, address: str) -> int:
        """Return the native balance of ``address`` in wei."""
        try:
            return await self._timed("get_balance", self._w3.eth.get_balance(address))
        except Exception as exc:
            raise LedgerError(f"Balance lookup failed: {exc}") from exc

    async def close(self) -> None:
        """Release the provider's HTTP session when it has one."""
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
