"""GET /health — liveness check."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health(request: Request) -> dict:  # type: ignore[type-arg]
    try:
        await request.app.state.mongo_client.admin.command("ping")
        db_status = "connected"
    except Exception as exc:
        logger.warning("MongoDB ping failed: %s", exc)
        db_status = "unavailable"

    return {"status": "ok", "db": db_status}
