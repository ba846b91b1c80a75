# src/reaction_relay/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import cron_router, queue_router, relay_router

__all__ = [
    "cron_router",
    "queue_router",
    "relay_router",
]
