# tests/conftest.py
from __future__ import annotations

import asyncio
import os
import tempfile
from collections.abc import AsyncIterator, Iterator
from itertools import count
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

# Keep the application engine away from the working directory and the relay off.
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{Path(tempfile.gettempdir()) / f'reaction_relay_{os.getpid()}.db'}",
)
os.environ.setdefault("RELAY_ENABLED", "false")

from reaction_relay.api.v1.dependencies import get_queue_repository
from reaction_relay.core.settings import Settings
from reaction_relay.db.session import create_tables, drop_tables, make_engine, make_sessionmaker
from reaction_relay.main import app as fastapi_app
from reaction_relay.repositories import TransactionQueueRepository
from reaction_relay.services.events import CollectingObserver
from reaction_relay.services.ledger import LedgerCall, PreparedRequest
from reaction_relay.services.processor import RelayProcessor
from reaction_relay.services.relay_loop import RelayLoop
from reaction_relay.services.relay_runtime import RelayRuntime, set_relay_runtime


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.value = start

    def __call__(self) -> int:
        return self.value

    def advance(self, ms: int) -> None:
        self.value += ms


class FakeSigner:
    def __init__(self, address: str) -> None:
        self.address = address

    def sign_transaction(self, transaction_dict: Any) -> Any:
        raise AssertionError("FakeLedger never signs")


class FakeLedger:
    """In-memory ledger that records calls in submission order.

    ``fail_calls`` is keyed by (function name, first argument) and
    ``fail_signers`` by signer address; both raise during simulation.
    """

    def __init__(self, *, delay: float = 0.0) -> None:
        self.delay = delay
        self.submitted: list[tuple[str, LedgerCall]] = []
        self.fail_calls: dict[tuple[str, Any], Exception] = {}
        self.fail_signers: dict[str, Exception] = {}
        self.fail_submit: Exception | None = None
        self._hashes = count(1)

    async def simulate(self, call: LedgerCall, signer: Any) -> PreparedRequest:
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        error = self.fail_signers.get(signer.address) or self.fail_calls.get(
            (call.function_name, call.args[0])
        )
        if error is not None:
            raise error
        return PreparedRequest(call=call, signer=signer, transaction={})

    async def submit(self, request: PreparedRequest) -> str:
        await asyncio.sleep(0)
        if self.fail_submit is not None:
            raise self.fail_submit
        self.submitted.append((request.signer.address, request.call))
        return f"0x{next(self._hashes):064x}"

    async def read(self, function_name: str, *args: Any) -> Any:
        return None

    async def balance_of(self, address: str) -> int:
        return 0


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}"


@pytest.fixture()
async def engine(db_url: str) -> AsyncIterator[AsyncEngine]:
    engine = make_engine(db_url)
    await create_tables(engine)
    try:
        yield engine
    finally:
        await drop_tables(engine)
        await engine.dispose()


@pytest.fixture()
def repo(engine: AsyncEngine, clock: FakeClock) -> TransactionQueueRepository:
    return TransactionQueueRepository(make_sessionmaker(engine), clock=clock)


@pytest.fixture()
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture()
def signer() -> FakeSigner:
    return FakeSigner("0x000000000000000000000000000000000000A11c")


@pytest.fixture()
def collector() -> CollectingObserver:
    return CollectingObserver()


@pytest.fixture()
def processor(
    repo: TransactionQueueRepository, ledger: FakeLedger, collector: CollectingObserver
) -> RelayProcessor:
    return RelayProcessor(repo, ledger, observers=[collector])


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def api_repo(db_url: str, clock: FakeClock) -> Iterator[TransactionQueueRepository]:
    """Repository usable from the TestClient's own event loop.

    NullPool keeps connections from outliving the loop that opened them.
    """
    engine = create_async_engine(db_url, poolclass=NullPool)
    asyncio.run(create_tables(engine))
    yield TransactionQueueRepository(make_sessionmaker(engine), clock=clock)


@pytest.fixture()
def api_runtime(
    api_repo: TransactionQueueRepository, signer: FakeSigner
) -> Iterator[RelayRuntime]:
    collector = CollectingObserver()
    ledger = FakeLedger()
    processor = RelayProcessor(api_repo, ledger, observers=[collector])
    runtime = RelayRuntime(
        api_repo,
        ledger,
        processor,
        config=Settings(RELAY_BATCH_CEILING=20),
        signer=signer,
        loop=RelayLoop(processor, signer, interval=3600),
        collector=collector,
    )
    set_relay_runtime(runtime)
    try:
        yield runtime
    finally:
        set_relay_runtime(None)


@pytest.fixture()
def client(
    app: FastAPI, api_repo: TransactionQueueRepository, api_runtime: RelayRuntime
) -> Iterator[TestClient]:
    app.dependency_overrides[get_queue_repository] = lambda: api_repo
    try:
        yield TestClient(app, base_url="http://test")
    finally:
        app.dependency_overrides.pop(get_queue_repository, None)


@pytest.fixture()
def make_signer() -> type[FakeSigner]:
    return FakeSigner
