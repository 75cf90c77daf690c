"""Sync request/response schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SyncStartRequest(BaseModel):
    vault_id: int = Field(ge=1)


class SyncStartResponse(BaseModel):
    sync_id: int
    status: str


class SyncRunResponse(BaseModel):
    """One sync ledger entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    vault_id: int
    vault_name: str | None = None
    kind: str
    status: str
    items_synced: int
    error_count: int
    error_message: str | None = None
    started_at: datetime
    completed_at: datetime | None = None


class SyncStatusResponse(BaseModel):
    active_syncs: list[SyncRunResponse]
    last_syncs: list[SyncRunResponse]
