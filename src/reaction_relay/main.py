# src/reaction_relay/main.py
"""Main entry point for the reaction relay service."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from reaction_relay import __version__
from reaction_relay.api.v1 import cron_router, queue_router, relay_router
from reaction_relay.core.settings import settings
from reaction_relay.db.session import create_tables
from reaction_relay.services.ledger import LedgerError
from reaction_relay.services.relay_runtime import get_relay_runtime, relay_enabled

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="At-least-once relay of queued reactions and explosions to the ledger",
    version=__version__,
)

# Include API routers
app.include_router(queue_router, prefix="/api/v1")
app.include_router(relay_router, prefix="/api/v1")
app.include_router(cron_router, prefix="/api")


@app.on_event("startup")
async def on_startup() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    await create_tables()
    app.state.relay = None
    if not relay_enabled():
        return
    try:
        relay = get_relay_runtime()
    except LedgerError as exc:
        logger.error("Relay enabled but not configured: %s", exc)
        return
    await relay.start()
    app.state.relay = relay


@app.on_event("shutdown")
async def on_shutdown() -> None:
    relay = getattr(app.state, "relay", None)
    if relay:
        await relay.close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": __version__,
        "description": "At-least-once relay of queued reactions and explosions to the ledger",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("reaction_relay.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
