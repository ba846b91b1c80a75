# src/reaction_relay/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .cron import router as cron_router
from .queue import router as queue_router
from .relay import router as relay_router

__all__ = [
    "cron_router",
    "queue_router",
    "relay_router",
]
