# src/reaction_relay/api/v1/endpoints/queue.py
"""Queue endpoints: producers enqueue work and dashboards read counters."""

from fastapi import APIRouter, HTTPException, status

from reaction_relay.api.v1.dependencies import QueueRepoDep
from reaction_relay.models import TxKind, TxStatus
from reaction_relay.repositories import InvalidQueueItem, StoreUnavailable
from reaction_relay.schemas import (
    EnqueueResponse,
    ExplosionCreate,
    QueueItem,
    QueueStats,
    ReactionCreate,
)

router = APIRouter(prefix="/queue", tags=["queue"])


def _store_unavailable(err: StoreUnavailable) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(err))


async def _enqueue(
    repo: QueueRepoDep, kind: TxKind, entity_id: str | None, payload: tuple[int, int, int]
) -> EnqueueResponse:
    try:
        item_id = await repo.enqueue(kind, entity_id, payload)
    except InvalidQueueItem as err:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(err),
        ) from err
    except StoreUnavailable as err:
        raise _store_unavailable(err) from err
    return EnqueueResponse(id=item_id, status=TxStatus.PENDING)


@router.post("/reactions", response_model=EnqueueResponse, status_code=status.HTTP_201_CREATED)
async def enqueue_reaction(body: ReactionCreate, repo: QueueRepoDep) -> EnqueueResponse:
    """Queue a reaction write.

    Args:
        body: Reaction position, energy and optional entity id
        repo: Queue repository

    Returns:
        Identifier and status of the new queue item
    """
    return await _enqueue(repo, TxKind.REACTION, body.entity_id, (body.x, body.y, body.energy))


@router.post("/explosions", response_model=EnqueueResponse, status_code=status.HTTP_201_CREATED)
async def enqueue_explosion(body: ExplosionCreate, repo: QueueRepoDep) -> EnqueueResponse:
    """Queue an explosion write for an entity."""
    return await _enqueue(repo, TxKind.EXPLOSION, body.entity_id, (0, 0, 0))


@router.get("/stats", response_model=QueueStats)
async def get_queue_stats(repo: QueueRepoDep) -> QueueStats:
    """Return item counts per status plus the number of recorded explosions."""
    try:
        counts = await repo.counts_by_status()
        explosions = await repo.count_explosions()
    except StoreUnavailable as err:
        raise _store_unavailable(err) from err
    return QueueStats(
        pending=counts[TxStatus.PENDING.value],
        leased=counts[TxStatus.LEASED.value],
        sent=counts[TxStatus.SENT.value],
        failed=counts[TxStatus.FAILED.value],
        explosions=explosions,
    )


@router.get("/next", response_model=QueueItem | None)
async def peek_next_item(repo: QueueRepoDep) -> QueueItem | None:
    """Return the item the relay would claim next, without claiming it."""
    try:
        return await repo.peek_next_pending()
    except StoreUnavailable as err:
        raise _store_unavailable(err) from err


@router.get("/{item_id}", response_model=QueueItem)
async def get_queue_item(item_id: int, repo: QueueRepoDep) -> QueueItem:
    """Return one queue item.

    Raises:
        HTTPException: 404 if no item has this id
    """
    try:
        item = await repo.get(item_id)
    except StoreUnavailable as err:
        raise _store_unavailable(err) from err
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Queue item not found")
    return item
