import asyncio

import pytest

from reaction_relay.models import TxStatus
from reaction_relay.services.events import CollectingObserver, Failed, Sent
from reaction_relay.services.ledger import SubmissionError
from reaction_relay.services.policy import BackoffPolicy
from reaction_relay.services.wallet_pool import MultiWalletPool

ADDRESSES = [
    "0x0000000000000000000000000000000000000a00",
    "0x0000000000000000000000000000000000000a01",
    "0x0000000000000000000000000000000000000a02",
]


@pytest.fixture()
def signers(make_signer):
    return [make_signer(address) for address in ADDRESSES]


@pytest.fixture()
async def pool(processor, signers):
    # Long intervals keep the timers quiet; tests drive ticks explicitly.
    pool = MultiWalletPool(processor, signers, base_interval=3600, stagger=1, error_ceiling=5)
    await pool.start()
    try:
        yield pool
    finally:
        await pool.stop()


async def _drain(pool, repo, indexes=(0, 1, 2)):
    while await repo.count_pending():
        await asyncio.gather(*(pool.tick_wallet(index) for index in indexes))


def test_wallet_intervals_are_staggered_by_index(processor, signers):
    pool = MultiWalletPool(processor, signers, base_interval=0.1, stagger=0.05)
    assert [worker.interval for worker in pool.workers] == pytest.approx([0.1, 0.15, 0.2])


def test_unusable_keys_keep_their_positions(processor, signers):
    pool = MultiWalletPool(processor, [signers[0], None, signers[2]])

    assert [worker.index for worker in pool.workers] == [0, 2]
    assert [state.address for state in pool.latest_status] == [ADDRESSES[0], ADDRESSES[2]]
    with pytest.raises(IndexError):
        pool.worker(1)


@pytest.mark.asyncio
async def test_wallets_never_relay_the_same_item(pool, repo, ledger):
    ids = [await repo.enqueue_reaction(i, i, i) for i in range(30)]

    await _drain(pool, repo)

    relayed = [call.args[0] for _, call in ledger.submitted]
    assert sorted(relayed) == list(range(30))
    assert await repo.count(TxStatus.SENT) == len(ids)
    states = await pool.status()
    assert sum(state.total_processed for state in states) == 30
    assert {address for address, _ in ledger.submitted} <= set(ADDRESSES)


@pytest.mark.asyncio
async def test_misconfigured_wallet_trips_its_circuit_only(pool, repo, ledger, caplog):
    ledger.fail_signers[ADDRESSES[1]] = SubmissionError("insufficient funds")
    for i in range(20):
        await repo.enqueue_reaction(i, i, i)

    await _drain(pool, repo)

    states = {state.index: state for state in await pool.status()}
    assert states[1].total_failed == 5
    assert states[1].consecutive_errors == 5
    assert states[1].circuit_open is True
    assert states[1].total_processed == 0
    assert states[0].total_processed + states[2].total_processed == 15
    assert not states[0].circuit_open and not states[2].circuit_open
    assert await repo.count(TxStatus.FAILED) == 5
    assert await repo.count(TxStatus.SENT) == 15
    assert "circuit open" in caplog.text


@pytest.mark.asyncio
async def test_open_circuit_makes_no_claims(pool, repo, ledger):
    ledger.fail_signers[ADDRESSES[1]] = SubmissionError("insufficient funds")
    for i in range(5):
        await repo.enqueue_reaction(i, i, i)
        assert isinstance(await pool.tick_wallet(1), Failed)
    await repo.enqueue_reaction(99, 99, 99)

    assert await pool.tick_wallet(1) is None
    assert await repo.count_pending() == 1


@pytest.mark.asyncio
async def test_reset_reopens_a_tripped_wallet(pool, repo, ledger):
    ledger.fail_signers[ADDRESSES[1]] = SubmissionError("insufficient funds")
    for i in range(5):
        await repo.enqueue_reaction(i, i, i)
        await pool.tick_wallet(1)

    state = await pool.reset_wallet(1)
    assert state.consecutive_errors == 0
    assert state.circuit_open is False
    assert state.total_failed == 5

    del ledger.fail_signers[ADDRESSES[1]]
    await repo.enqueue_reaction(50, 50, 50)
    assert isinstance(await pool.tick_wallet(1), Sent)

    with pytest.raises(IndexError):
        await pool.reset_wallet(7)


@pytest.mark.asyncio
async def test_success_clears_error_streak(pool, repo, ledger):
    await repo.enqueue_reaction(1, 1, 1)
    await repo.enqueue_reaction(2, 2, 2)
    ledger.fail_calls[("recordReaction", 1)] = SubmissionError("nonce too low")

    await pool.tick_wallet(0)
    assert (await pool.worker(0).snapshot()).consecutive_errors == 1
    await pool.tick_wallet(0)

    state = await pool.worker(0).snapshot()
    assert state.consecutive_errors == 0
    assert state.total_failed == 1
    assert state.total_processed == 1


@pytest.mark.asyncio
async def test_store_outage_does_not_count_as_wallet_error(processor, signers, mocker):
    from reaction_relay.repositories import StoreUnavailable

    mocker.patch.object(
        processor.store,
        "dequeue_next_pending",
        side_effect=StoreUnavailable("database is locked"),
    )
    pool = MultiWalletPool(processor, signers[:1], base_interval=3600)
    await pool.start()
    try:
        assert await pool.tick_wallet(0) is None
        state = (await pool.status())[0]
    finally:
        await pool.stop()

    assert state.consecutive_errors == 0
    assert state.is_processing is False


@pytest.mark.asyncio
async def test_backoff_skips_ticks_until_reset(processor, signers, repo, ledger):
    ledger.fail_signers[ADDRESSES[0]] = SubmissionError("rate limited")
    pool = MultiWalletPool(
        processor,
        signers[:1],
        base_interval=3600,
        backoff=BackoffPolicy(base_seconds=60, max_seconds=60),
    )
    await pool.start()
    try:
        await repo.enqueue_reaction(1, 1, 1)
        await repo.enqueue_reaction(2, 2, 2)
        assert isinstance(await pool.tick_wallet(0), Failed)
        assert await pool.tick_wallet(0) is None
        assert await repo.count_pending() == 1

        await pool.reset_wallet(0)
        assert isinstance(await pool.tick_wallet(0), Failed)
    finally:
        await pool.stop()


@pytest.mark.asyncio
async def test_pause_and_resume(pool, repo):
    await repo.enqueue_reaction(1, 1, 1)

    pool.pause()
    assert pool.paused
    assert await pool.tick_wallet(0) is None
    assert await repo.count_pending() == 1

    pool.resume()
    assert isinstance(await pool.tick_wallet(0), Sent)


@pytest.mark.asyncio
async def test_status_snapshots_are_published_to_observers(processor, signers, repo):
    observer = CollectingObserver()
    pool = MultiWalletPool(processor, signers[:2], base_interval=3600, observers=[observer])
    await pool.start()
    try:
        await repo.enqueue_reaction(1, 1, 1)
        await pool.tick_wallet(1)
        await asyncio.sleep(0)
    finally:
        await pool.stop()

    assert [state.index for state in observer.status] == [0, 1]
    assert observer.status[1].total_processed == 1
    assert observer.status[1].is_processing is False
    assert pool.latest_status[1].total_processed == 1
    assert isinstance(observer.outcomes[-1], Sent)
    assert observer.outcomes[-1].wallet_index == 1


@pytest.mark.asyncio
async def test_stop_lets_in_flight_cycle_finish(processor, signers, repo, ledger):
    ledger.delay = 0.05
    item_id = await repo.enqueue_reaction(1, 1, 1)
    pool = MultiWalletPool(processor, signers[:1], base_interval=3600)
    await pool.start()

    pending = asyncio.create_task(pool.tick_wallet(0))
    await asyncio.sleep(0.01)
    await pool.stop()
    outcome = await pending

    assert isinstance(outcome, Sent)
    assert (await repo.get(item_id)).status is TxStatus.SENT
    assert pool.latest_status[0].total_processed == 1
    assert not pool.is_running
    with pytest.raises(RuntimeError):
        await pool.tick_wallet(0)


@pytest.mark.asyncio
async def test_timers_drain_the_queue(processor, signers, repo):
    for i in range(12):
        await repo.enqueue_reaction(i, i, i)
    pool = MultiWalletPool(processor, signers, base_interval=0.01, stagger=0.005)

    await pool.start()
    try:
        for _ in range(300):
            if await repo.count(TxStatus.SENT) == 12:
                break
            await asyncio.sleep(0.01)
    finally:
        await pool.stop()

    assert await repo.count(TxStatus.SENT) == 12
    assert sum(state.total_processed for state in pool.latest_status) == 12
