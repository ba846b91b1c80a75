# src/reaction_relay/api/v1/endpoints/cron.py
"""Endpoint invoked by an external scheduler to drain the queue."""

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from reaction_relay.services.relay_runtime import get_relay_runtime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


@router.get("/process-transactions", response_model=None)
async def process_transactions() -> dict[str, Any] | JSONResponse:
    """Run one drain-and-sweep pass.

    Returns:
        The number of items sent in this pass, or a 500 response carrying
        the error when the pass could not run
    """
    try:
        summary = await get_relay_runtime().drain()
    except Exception as e:
        logger.error("Error in scheduled drain: %s", e, exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": str(e),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )
    return {
        "success": True,
        "processed_transactions": summary.processed_count,
        "failed_transactions": summary.failed_count,
        "purged_transactions": summary.purged_count,
        "released_leases": summary.released_count,
        "timestamp": summary.timestamp.isoformat(),
    }
