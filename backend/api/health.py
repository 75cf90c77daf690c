"""Health check endpoint."""

from __future__ import annotations

import logging
import time
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.deps import get_orchestrator, get_session
from backend.services.settings_service import has_device_token
from backend.services.sync_service import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

VERSION = "1.0.0"


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float
    database: str
    remarkable_configured: bool
    running_syncs: int


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_session)],
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> HealthResponse:
    """Liveness plus database reachability and sync activity."""
    db_status = "ok"
    configured = False
    try:
        await session.execute(text("SELECT 1"))
        configured = await has_device_token(session)
    except Exception:
        logger.warning("Health check database query failed", exc_info=True)
        db_status = "error"

    return HealthResponse(
        status="ok" if db_status == "ok" else "degraded",
        version=VERSION,
        uptime_seconds=round(time.monotonic() - request.app.state.started_at, 1),
        database=db_status,
        remarkable_configured=configured,
        running_syncs=orchestrator.worker.pending,
    )
