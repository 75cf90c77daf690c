"""Vault and tracked document schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class VaultCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    local_path: str = Field(min_length=1)
    sync_enabled: bool = True


class VaultUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    local_path: str | None = Field(default=None, min_length=1)
    sync_enabled: bool | None = None


class VaultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    local_path: str
    sync_enabled: bool
    last_synced_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class TrackedItemResponse(BaseModel):
    """Stored state of one remote document or folder."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    vault_id: int
    remote_id: str
    file_name: str
    display_name: str
    local_path: str
    last_modified_at: datetime | None = None
    remote_version: int
    synced_at: datetime
    content_hash: str | None = None
    processed: bool
    parent_remote_id: str | None = None
    is_folder: bool
    file_kind: str
    file_size: int | None = None


class HierarchyNodeResponse(TrackedItemResponse):
    children: list[HierarchyNodeResponse] = Field(default_factory=list)


class SyncStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_documents: int
    processed_documents: int
    unprocessed_documents: int
    folders: int
    files: int
    latest_modification: datetime | None = None
    last_sync: datetime | None = None


class MarkProcessedRequest(BaseModel):
    content_hash: str | None = Field(default=None, max_length=64)
    file_size: int | None = Field(default=None, ge=0)
