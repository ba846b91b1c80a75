"""Shared API dependencies for the queue store and the relay runtime."""

from typing import Annotated

from fastapi import Depends, HTTPException, status

from reaction_relay.repositories import TransactionQueueRepository
from reaction_relay.services.ledger import LedgerError
from reaction_relay.services.relay_runtime import RelayRuntime, get_relay_runtime


def get_queue_repository() -> TransactionQueueRepository:
    """Return a repository bound to the application session factory."""
    return TransactionQueueRepository()


def get_relay() -> RelayRuntime:
    """Return the process-wide relay runtime.

    Raises:
        HTTPException: If the relay cannot be built from the current settings
    """
    try:
        return get_relay_runtime()
    except LedgerError as err:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(err),
        ) from err


# Type aliases for dependency injection
QueueRepoDep = Annotated[TransactionQueueRepository, Depends(get_queue_repository)]
RelayDep = Annotated[RelayRuntime, Depends(get_relay)]
