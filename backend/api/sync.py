"""Sync API endpoints: start, stop, and inspect sync runs."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.deps import get_orchestrator, get_session
from backend.models.sync import SyncStatus
from backend.schemas.sync import (
    SyncRunResponse,
    SyncStartRequest,
    SyncStartResponse,
    SyncStatusResponse,
)
from backend.services.sync_service import (
    SyncOrchestrator,
    get_run,
    get_status,
    list_history,
    stop_sync,
)

if TYPE_CHECKING:
    from backend.models.sync import SyncRun

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


def _run_response(run: SyncRun, vault_name: str | None = None) -> SyncRunResponse:
    response = SyncRunResponse.model_validate(run)
    response.vault_name = vault_name
    return response


@router.get("/history", response_model=list[SyncRunResponse])
async def sync_history(
    session: Annotated[AsyncSession, Depends(get_session)],
    vault_id: Annotated[int | None, Query(ge=1)] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[SyncRunResponse]:
    """List sync runs, newest first."""
    entries = await list_history(session, vault_id=vault_id, limit=limit, offset=offset)
    return [_run_response(entry.run, entry.vault_name) for entry in entries]


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SyncStatusResponse:
    """Runs in progress and the latest run of every vault."""
    summary = await get_status(session)
    return SyncStatusResponse(
        active_syncs=[_run_response(e.run, e.vault_name) for e in summary.active],
        last_syncs=[_run_response(e.run, e.vault_name) for e in summary.latest],
    )


@router.get("/runs/{sync_id}", response_model=SyncRunResponse)
async def sync_run(
    sync_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SyncRunResponse:
    """Poll one run's state."""
    run = await get_run(session, sync_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Sync not found")
    return _run_response(run)


@router.post(
    "/start", response_model=SyncStartResponse, status_code=status.HTTP_202_ACCEPTED
)
async def sync_start(
    body: SyncStartRequest,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> SyncStartResponse:
    """Start a manual sync. The run proceeds in the background."""
    run = await orchestrator.start_sync(body.vault_id)
    return SyncStartResponse(sync_id=run.id, status=run.status)


@router.post("/stop/{sync_id}", response_model=SyncRunResponse)
async def sync_stop(
    sync_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SyncRunResponse:
    """Mark a running sync as stopped. Work already in flight is not interrupted."""
    run = await get_run(session, sync_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Sync not found")
    if run.status != SyncStatus.IN_PROGRESS or not await stop_sync(session, run):
        raise HTTPException(status_code=400, detail="Sync is not in progress")
    return _run_response(run)
