"""Tracked item persistence: CRUD, hierarchy, and per-vault statistics."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import case, delete, func, select

from backend.models.document import TrackedItem
from backend.services.datetime_service import now_utc
from backend.services.hierarchy import TreeNode, build_forest

if TYPE_CHECKING:
    from collections.abc import Collection

    from sqlalchemy.ext.asyncio import AsyncSession

    from backend.remote.parser import RemoteItem

logger = logging.getLogger(__name__)

_DELETE_CHUNK = 500


@dataclass
class SyncStats:
    """Aggregate state of a vault's tracked items."""

    total_documents: int
    processed_documents: int
    unprocessed_documents: int
    folders: int
    files: int
    latest_modification: datetime | None
    last_sync: datetime | None


async def get_item(session: AsyncSession, vault_id: int, remote_id: str) -> TrackedItem | None:
    stmt = select(TrackedItem).where(
        TrackedItem.vault_id == vault_id, TrackedItem.remote_id == remote_id
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def insert_item(
    session: AsyncSession,
    vault_id: int,
    item: RemoteItem,
    *,
    file_name: str,
    local_path: str,
) -> TrackedItem:
    """Record a newly seen remote item as unprocessed and commit."""
    tracked = TrackedItem(
        vault_id=vault_id,
        remote_id=item.id,
        file_name=file_name,
        display_name=item.name,
        local_path=local_path,
        last_modified_at=item.last_modified_at,
        remote_version=item.version,
        synced_at=now_utc(),
        processed=False,
        parent_remote_id=item.parent_id,
        is_folder=item.is_folder,
        file_kind=str(item.file_kind),
    )
    session.add(tracked)
    await session.commit()
    return tracked


async def update_item(
    session: AsyncSession,
    tracked: TrackedItem,
    item: RemoteItem,
    *,
    file_name: str,
    local_path: str,
) -> TrackedItem:
    """Overwrite mutable fields from the remote item, reset processing, and commit."""
    tracked.display_name = item.name
    tracked.file_name = file_name
    tracked.local_path = local_path
    tracked.last_modified_at = item.last_modified_at
    tracked.remote_version = item.version
    tracked.parent_remote_id = item.parent_id
    tracked.is_folder = item.is_folder
    tracked.file_kind = str(item.file_kind)
    tracked.processed = False
    tracked.synced_at = now_utc()
    await session.commit()
    return tracked


async def delete_missing(
    session: AsyncSession, vault_id: int, present_remote_ids: Collection[str]
) -> list[str]:
    """Delete the vault's items whose remote id is not in ``present_remote_ids``.

    An empty collection deletes nothing. Returns the deleted remote ids.
    """
    if not present_remote_ids:
        return []
    present = set(present_remote_ids)
    rows = await session.execute(
        select(TrackedItem.id, TrackedItem.remote_id).where(TrackedItem.vault_id == vault_id)
    )
    stale = [(row_id, remote_id) for row_id, remote_id in rows if remote_id not in present]
    if not stale:
        return []

    stale_ids = [row_id for row_id, _ in stale]
    for start in range(0, len(stale_ids), _DELETE_CHUNK):
        chunk = stale_ids[start : start + _DELETE_CHUNK]
        await session.execute(delete(TrackedItem).where(TrackedItem.id.in_(chunk)))
    await session.commit()
    return [remote_id for _, remote_id in stale]


async def list_items(session: AsyncSession, vault_id: int) -> list[TrackedItem]:
    """All tracked items of a vault, folders first, then by display name."""
    stmt = (
        select(TrackedItem)
        .where(TrackedItem.vault_id == vault_id)
        .order_by(TrackedItem.is_folder.desc(), TrackedItem.display_name.asc())
    )
    return list((await session.execute(stmt)).scalars().all())


async def list_unprocessed(session: AsyncSession, vault_id: int) -> list[TrackedItem]:
    """Files that still need downstream processing, most recently modified first."""
    stmt = (
        select(TrackedItem)
        .where(
            TrackedItem.vault_id == vault_id,
            TrackedItem.processed.is_(False),
            TrackedItem.is_folder.is_(False),
        )
        .order_by(TrackedItem.last_modified_at.desc())
    )
    return list((await session.execute(stmt)).scalars().all())


async def mark_processed(
    session: AsyncSession,
    vault_id: int,
    item_id: int,
    content_hash: str | None = None,
    file_size: int | None = None,
) -> TrackedItem | None:
    """Flag an item as processed. Returns None if it is not in the vault."""
    tracked = await session.get(TrackedItem, item_id)
    if tracked is None or tracked.vault_id != vault_id:
        return None
    tracked.processed = True
    tracked.content_hash = content_hash
    if file_size is not None:
        tracked.file_size = file_size
    tracked.synced_at = now_utc()
    await session.commit()
    return tracked


async def get_sync_stats(session: AsyncSession, vault_id: int) -> SyncStats:
    stmt = select(
        func.count(TrackedItem.id),
        func.count(case((TrackedItem.processed.is_(True), 1))),
        func.count(case((TrackedItem.processed.is_(False), 1))),
        func.count(case((TrackedItem.is_folder.is_(True), 1))),
        func.count(case((TrackedItem.is_folder.is_(False), 1))),
        func.max(TrackedItem.last_modified_at),
        func.max(TrackedItem.synced_at),
    ).where(TrackedItem.vault_id == vault_id)
    row = (await session.execute(stmt)).one()
    return SyncStats(
        total_documents=row[0],
        processed_documents=row[1],
        unprocessed_documents=row[2],
        folders=row[3],
        files=row[4],
        latest_modification=row[5],
        last_sync=row[6],
    )


async def get_hierarchy(session: AsyncSession, vault_id: int) -> list[TreeNode[TrackedItem]]:
    """Rebuild the vault's folder forest from stored parent references."""
    items = await list_items(session, vault_id)
    return build_forest(
        items,
        key=lambda tracked: tracked.remote_id,
        parent_key=lambda tracked: tracked.parent_remote_id,
    )
