# src/reaction_relay/api/v1/endpoints/relay.py
"""Relay control and observability endpoints."""

from dataclasses import asdict

from fastapi import APIRouter, HTTPException, Query, status

from reaction_relay.api.v1.dependencies import RelayDep
from reaction_relay.schemas import OutcomeResponse, RelayStatusResponse, WalletStatusResponse
from reaction_relay.services.events import RelayOutcome, Sent
from reaction_relay.services.relay_runtime import RelayRuntime
from reaction_relay.services.wallet_pool import WalletState

router = APIRouter(prefix="/relay", tags=["relay"])


def _wallet_response(state: WalletState) -> WalletStatusResponse:
    return WalletStatusResponse(**asdict(state))


def _outcome_response(outcome: RelayOutcome) -> OutcomeResponse:
    if isinstance(outcome, Sent):
        return OutcomeResponse(
            item_id=outcome.item.id,
            kind=outcome.item.kind.value,
            wallet_index=outcome.wallet_index,
            sent=True,
            tx_hash=outcome.tx_hash,
        )
    return OutcomeResponse(
        item_id=outcome.item.id,
        kind=outcome.item.kind.value,
        wallet_index=outcome.wallet_index,
        sent=False,
        error=str(outcome.error),
    )


async def _status(relay: RelayRuntime) -> RelayStatusResponse:
    wallets = await relay.wallets()
    return RelayStatusResponse(
        mode=relay.mode,
        running=relay.running,
        paused=relay.paused,
        wallets=[_wallet_response(state) for state in wallets],
    )


@router.get("/status", response_model=RelayStatusResponse)
async def get_relay_status(relay: RelayDep) -> RelayStatusResponse:
    """Return the relay mode, run state and per-wallet counters."""
    return await _status(relay)


@router.post("/pause", response_model=RelayStatusResponse)
async def pause_relay(relay: RelayDep) -> RelayStatusResponse:
    """Stop starting new relay cycles; in-flight submissions still finish."""
    relay.pause()
    return await _status(relay)


@router.post("/resume", response_model=RelayStatusResponse)
async def resume_relay(relay: RelayDep) -> RelayStatusResponse:
    relay.resume()
    return await _status(relay)


@router.post("/wallets/{index}/reset", response_model=WalletStatusResponse)
async def reset_wallet(index: int, relay: RelayDep) -> WalletStatusResponse:
    """Clear a wallet's error streak so it resumes ticking.

    Args:
        index: Position of the wallet in the configured key list
        relay: Relay runtime

    Returns:
        The wallet's state after the reset

    Raises:
        HTTPException: 404 if no wallet is configured at this index
    """
    try:
        state = await relay.reset_wallet(index)
    except IndexError as err:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(err)) from err
    return _wallet_response(state)


@router.get("/outcomes", response_model=list[OutcomeResponse])
async def list_outcomes(
    relay: RelayDep,
    limit: int = Query(50, ge=1, le=500),
) -> list[OutcomeResponse]:
    """Return the most recent relay outcomes, newest first."""
    recent = list(relay.collector.outcomes)[-limit:]
    return [_outcome_response(outcome) for outcome in reversed(recent)]
