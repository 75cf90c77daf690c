"""Vault endpoints, including tracked document stats and hierarchy."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.deps import get_session
from backend.schemas.vault import (
    HierarchyNodeResponse,
    MarkProcessedRequest,
    SyncStatsResponse,
    TrackedItemResponse,
    VaultCreate,
    VaultResponse,
    VaultUpdate,
)
from backend.services import record_store
from backend.services.hierarchy import iter_nodes
from backend.services.vault_service import (
    create_vault,
    delete_vault,
    get_vault,
    list_vaults,
    update_vault,
)

if TYPE_CHECKING:
    from backend.models.document import TrackedItem
    from backend.services.hierarchy import TreeNode

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/vaults", tags=["vaults"])


def _hierarchy_payload(roots: list[TreeNode[TrackedItem]]) -> list[dict[str, Any]]:
    """Flatten tree nodes into nested dicts without recursion."""
    payloads: dict[str, dict[str, Any]] = {}
    for node in iter_nodes(roots):
        data = TrackedItemResponse.model_validate(node.value).model_dump()
        data["children"] = []
        payloads[node.key] = data
    for node in iter_nodes(roots):
        payloads[node.key]["children"] = [payloads[child.key] for child in node.children]
    return [payloads[root.key] for root in roots]


@router.get("", response_model=list[VaultResponse])
async def vaults_list(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[VaultResponse]:
    return [VaultResponse.model_validate(v) for v in await list_vaults(session)]


@router.post("", response_model=VaultResponse, status_code=status.HTTP_201_CREATED)
async def vaults_create(
    body: VaultCreate,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> VaultResponse:
    vault = await create_vault(
        session, name=body.name, local_path=body.local_path, sync_enabled=body.sync_enabled
    )
    return VaultResponse.model_validate(vault)


@router.get("/{vault_id}", response_model=VaultResponse)
async def vaults_get(
    vault_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> VaultResponse:
    return VaultResponse.model_validate(await get_vault(session, vault_id))


@router.patch("/{vault_id}", response_model=VaultResponse)
async def vaults_update(
    vault_id: int,
    body: VaultUpdate,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> VaultResponse:
    vault = await update_vault(
        session,
        vault_id,
        name=body.name,
        local_path=body.local_path,
        sync_enabled=body.sync_enabled,
    )
    return VaultResponse.model_validate(vault)


@router.delete("/{vault_id}", status_code=status.HTTP_204_NO_CONTENT)
async def vaults_delete(
    vault_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> None:
    """Delete a vault with all of its tracked documents and sync history."""
    await delete_vault(session, vault_id)


@router.get("/{vault_id}/stats", response_model=SyncStatsResponse)
async def vaults_stats(
    vault_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SyncStatsResponse:
    await get_vault(session, vault_id)
    stats = await record_store.get_sync_stats(session, vault_id)
    return SyncStatsResponse.model_validate(stats)


@router.get("/{vault_id}/hierarchy", response_model=list[HierarchyNodeResponse])
async def vaults_hierarchy(
    vault_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[dict[str, Any]]:
    """Tracked documents as a folder tree."""
    await get_vault(session, vault_id)
    roots = await record_store.get_hierarchy(session, vault_id)
    return _hierarchy_payload(roots)


@router.get("/{vault_id}/documents/unprocessed", response_model=list[TrackedItemResponse])
async def vaults_unprocessed(
    vault_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[TrackedItemResponse]:
    await get_vault(session, vault_id)
    items = await record_store.list_unprocessed(session, vault_id)
    return [TrackedItemResponse.model_validate(item) for item in items]


@router.post("/{vault_id}/documents/{item_id}/processed", response_model=TrackedItemResponse)
async def vaults_mark_processed(
    vault_id: int,
    item_id: int,
    body: MarkProcessedRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> TrackedItemResponse:
    """Record that downstream processing finished for a document."""
    tracked = await record_store.mark_processed(
        session, vault_id, item_id, content_hash=body.content_hash, file_size=body.file_size
    )
    if tracked is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return TrackedItemResponse.model_validate(tracked)
