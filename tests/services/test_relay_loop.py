import asyncio
from unittest.mock import AsyncMock

import pytest

from reaction_relay.models import TxStatus
from reaction_relay.repositories import StoreUnavailable, TransactionQueueRepository
from reaction_relay.services.events import Failed, Sent
from reaction_relay.services.ledger import SubmissionError
from reaction_relay.services.processor import RECORD_EXPLOSION, RECORD_REACTION, RelayProcessor
from reaction_relay.services.relay_loop import RelayLoop


@pytest.mark.asyncio
async def test_single_wallet_relays_in_fifo_order(repo, processor, ledger, signer):
    first = await repo.enqueue_reaction(1, 1, 10, "atom-1")
    second = await repo.enqueue_explosion("atom-2")
    third = await repo.enqueue_reaction(2, 2, 20)
    loop = RelayLoop(processor, signer, interval=3600)

    outcomes = [await loop.tick() for _ in range(4)]

    assert [outcome.item.id for outcome in outcomes[:3]] == [first, second, third]
    assert all(isinstance(outcome, Sent) for outcome in outcomes[:3])
    assert outcomes[3] is None
    assert [call.function_name for _, call in ledger.submitted] == [
        RECORD_REACTION,
        RECORD_EXPLOSION,
        RECORD_REACTION,
    ]
    hashes = {(await repo.get(item_id)).hash for item_id in (first, second, third)}
    assert len(hashes) == 3
    assert await repo.count_pending() == 0


@pytest.mark.asyncio
async def test_failed_item_does_not_stop_the_queue(repo, processor, ledger, signer):
    bad = await repo.enqueue_reaction(7, 7, 7)
    good = await repo.enqueue_reaction(8, 8, 8)
    ledger.fail_calls[(RECORD_REACTION, 7)] = SubmissionError("boom")
    loop = RelayLoop(processor, signer, interval=3600)

    first = await loop.tick()
    second = await loop.tick()

    assert isinstance(first, Failed)
    assert isinstance(second, Sent)
    assert (await repo.get(bad)).status is TxStatus.FAILED
    assert (await repo.get(good)).status is TxStatus.SENT
    state = loop.snapshot()
    assert state.total_processed == 1
    assert state.total_failed == 1
    assert state.consecutive_errors == 0


@pytest.mark.asyncio
async def test_empty_queue_makes_no_ledger_calls(processor, ledger, signer):
    loop = RelayLoop(processor, signer, interval=3600)

    assert await loop.tick() is None
    assert ledger.submitted == []


@pytest.mark.asyncio
async def test_tick_is_skipped_while_previous_is_in_flight(repo, processor, ledger, signer):
    ledger.delay = 0.05
    await repo.enqueue_reaction(1, 1, 1)
    await repo.enqueue_reaction(2, 2, 2)
    loop = RelayLoop(processor, signer, interval=3600)

    slow = asyncio.create_task(loop.tick())
    await asyncio.sleep(0.01)
    assert loop.in_flight
    skipped = await loop.tick()
    done = await slow

    assert skipped is None
    assert isinstance(done, Sent)
    assert await repo.count_pending() == 1


@pytest.mark.asyncio
async def test_store_outage_is_logged_and_swallowed(ledger, signer, caplog):
    store = AsyncMock(spec=TransactionQueueRepository)
    store.dequeue_next_pending.side_effect = StoreUnavailable("connection refused")
    loop = RelayLoop(RelayProcessor(store, ledger), signer, interval=3600)

    assert await loop.tick() is None
    assert not loop.in_flight
    assert "could not reach the queue store" in caplog.text


@pytest.mark.asyncio
async def test_paused_loop_skips_ticks(repo, processor, signer):
    await repo.enqueue_reaction(1, 1, 1)
    loop = RelayLoop(processor, signer, interval=3600)

    loop.pause()
    assert await loop.tick() is None
    loop.resume()
    assert isinstance(await loop.tick(), Sent)


@pytest.mark.asyncio
async def test_start_and_stop_drain_the_queue(repo, processor, signer):
    ids = [await repo.enqueue_reaction(i, i, i) for i in range(3)]
    loop = RelayLoop(processor, signer, interval=0.01)

    await loop.start()
    assert loop.is_running
    for _ in range(200):
        if await repo.count(TxStatus.SENT) == len(ids):
            break
        await asyncio.sleep(0.01)
    await loop.stop()

    assert not loop.is_running
    assert await repo.count(TxStatus.SENT) == len(ids)
    assert not loop.in_flight
