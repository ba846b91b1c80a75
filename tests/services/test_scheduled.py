from unittest.mock import AsyncMock

import pytest

from reaction_relay.models import TxStatus
from reaction_relay.repositories import StoreUnavailable, TransactionQueueRepository
from reaction_relay.services.ledger import SimulationError
from reaction_relay.services.processor import RECORD_REACTION, RelayProcessor
from reaction_relay.services.scheduled import run_scheduled_job

HOUR_MS = 3_600_000


@pytest.mark.asyncio
async def test_drains_up_to_ceiling_and_leaves_the_rest(repo, processor, signer, ledger):
    for i in range(25):
        await repo.enqueue_reaction(i, i, i)

    summary = await run_scheduled_job(repo, processor, signer)

    assert summary.processed_count == 20
    assert summary.failed_count == 0
    assert await repo.count(TxStatus.SENT) == 20
    assert await repo.count_pending() == 5
    assert [call.args[0] for _, call in ledger.submitted] == list(range(20))


@pytest.mark.asyncio
async def test_each_item_is_marked_before_the_next_attempt(
    repo, processor, signer, ledger, mocker
):
    sent_before_attempt = []
    simulate = ledger.simulate

    async def observing_simulate(call, signer):
        sent_before_attempt.append(await repo.count(TxStatus.SENT))
        return await simulate(call, signer)

    mocker.patch.object(ledger, "simulate", side_effect=observing_simulate)
    for i in range(3):
        await repo.enqueue_reaction(i, i, i)

    summary = await run_scheduled_job(repo, processor, signer)

    assert summary.processed_count == 3
    assert sent_before_attempt == [0, 1, 2]
    assert await repo.count(TxStatus.LEASED) == 0


@pytest.mark.asyncio
async def test_counts_failures_separately(repo, processor, signer, ledger):
    ledger.fail_calls[(RECORD_REACTION, 1)] = SimulationError("execution reverted")
    for i in range(3):
        await repo.enqueue_reaction(i, i, i)

    summary = await run_scheduled_job(repo, processor, signer, batch_ceiling=10)

    assert summary.processed_count == 2
    assert summary.failed_count == 1
    assert await repo.count(TxStatus.FAILED) == 1


@pytest.mark.asyncio
async def test_sweeps_old_terminal_rows_and_stale_leases(repo, processor, signer, clock):
    old_sent = await repo.enqueue_reaction(1, 1, 1)
    await repo.mark(old_sent, TxStatus.SENT, "0x1")
    stranded = await repo.enqueue_reaction(2, 2, 2)
    await repo.dequeue_next_pending(claimant=4)
    clock.advance(2 * HOUR_MS)

    summary = await run_scheduled_job(repo, processor, signer, batch_ceiling=0)

    assert summary.processed_count == 0
    assert summary.purged_count == 1
    assert summary.released_count == 1
    assert await repo.get(old_sent) is None
    assert (await repo.get(stranded)).status is TxStatus.PENDING


@pytest.mark.asyncio
async def test_recent_rows_survive_the_sweep(repo, processor, signer):
    await repo.enqueue_reaction(1, 1, 1)

    summary = await run_scheduled_job(repo, processor, signer)

    assert summary.processed_count == 1
    assert summary.purged_count == 0
    assert await repo.count(TxStatus.SENT) == 1


@pytest.mark.asyncio
async def test_store_outage_propagates_after_recording_progress(ledger, signer, mocker):
    store = AsyncMock(spec=TransactionQueueRepository)
    store.dequeue_next_pending.side_effect = StoreUnavailable("connection reset")
    processor = RelayProcessor(store, ledger)

    with pytest.raises(StoreUnavailable):
        await run_scheduled_job(store, processor, signer)
    store.purge.assert_not_awaited()


@pytest.mark.asyncio
async def test_purge_failure_is_logged_not_raised(repo, processor, signer, mocker, caplog):
    mocker.patch.object(repo, "purge", side_effect=StoreUnavailable("disk full"))
    await repo.enqueue_reaction(1, 1, 1)

    summary = await run_scheduled_job(repo, processor, signer)

    assert summary.processed_count == 1
    assert summary.purged_count == 0
    assert "Could not purge old transactions" in caplog.text
