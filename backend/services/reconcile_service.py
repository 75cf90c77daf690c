"""Reconciliation: diff remote items against tracked items and apply changes."""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from backend.services import record_store

if TYPE_CHECKING:
    from collections.abc import Collection

    from sqlalchemy.ext.asyncio import AsyncSession

    from backend.models.document import TrackedItem
    from backend.remote.parser import RemoteItem

logger = logging.getLogger(__name__)

_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE = re.compile(r"\s+")
_UNDERSCORES = re.compile(r"_{2,}")

FOLDERS_DIR = "folders"
DOCUMENTS_DIR = "documents"
NOTE_SUFFIX = ".md"


@dataclass
class ReconcileStats:
    """Outcome counts of one reconciliation pass.

    ``total`` is the size of the remote listing, before any deletions.
    """

    total: int = 0
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    errors: int = 0

    @property
    def items_synced(self) -> int:
        return self.new + self.updated

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ItemPaths:
    file_name: str
    local_path: str


def sanitize_file_name(name: str) -> str:
    """Make a display name safe to use as a file name.

    Characters illegal on common file systems and whitespace runs become
    ``_``, then ``_`` runs collapse to one. Surrounding whitespace therefore
    survives as a single ``_``.
    """
    sanitized = _ILLEGAL_CHARS.sub("_", name)
    sanitized = _WHITESPACE.sub("_", sanitized)
    return _UNDERSCORES.sub("_", sanitized).strip()


def derive_paths(item: RemoteItem) -> ItemPaths:
    """Compute the vault-relative path and file name for an item.

    Documents always map to a markdown note, whatever their source format.
    """
    base = sanitize_file_name(item.name) or sanitize_file_name(item.id)
    if item.is_folder:
        return ItemPaths(file_name=base, local_path=f"{FOLDERS_DIR}/{base}")
    file_name = f"{base}{NOTE_SUFFIX}"
    return ItemPaths(file_name=file_name, local_path=f"{DOCUMENTS_DIR}/{file_name}")


def needs_update(existing: TrackedItem, item: RemoteItem) -> bool:
    """Decide whether a tracked item is stale relative to the remote item.

    Checked in order: a higher remote version; a newer remote modification
    time than the recorded one; a remote modification after our last sync of
    an item that was already processed. Items still waiting for processing
    are not reset by the last rule.
    """
    if item.version > existing.remote_version:
        return True

    if item.last_modified_at is not None and existing.last_modified_at is not None:
        if item.last_modified_at > existing.last_modified_at:
            return True

    if item.last_modified_at is not None and existing.synced_at is not None:
        if item.last_modified_at > existing.synced_at and existing.processed:
            return True

    return False


async def _reconcile_item(
    session: AsyncSession, vault_id: int, item: RemoteItem, stats: ReconcileStats
) -> None:
    existing = await record_store.get_item(session, vault_id, item.id)
    paths = derive_paths(item)

    if existing is None:
        await record_store.insert_item(
            session, vault_id, item, file_name=paths.file_name, local_path=paths.local_path
        )
        stats.new += 1
        logger.debug("Added new document: %s (%s)", item.name, item.id)
    elif needs_update(existing, item):
        await record_store.update_item(
            session, existing, item, file_name=paths.file_name, local_path=paths.local_path
        )
        stats.updated += 1
        logger.debug("Updated document: %s (%s)", item.name, item.id)
    else:
        stats.unchanged += 1


async def reconcile(
    session: AsyncSession,
    vault_id: int,
    items: list[RemoteItem],
    *,
    keep_remote_ids: Collection[str] = (),
) -> ReconcileStats:
    """Apply a full remote listing to a vault's tracked items.

    Each item is written in its own transaction; a failing item is rolled
    back, logged and counted without stopping the others. Tracked items
    missing from the listing are deleted afterwards, unless the listing is
    empty, in which case nothing is deleted. ``keep_remote_ids`` names items
    that are listed remotely but could not be parsed; their rows are kept.
    """
    stats = ReconcileStats(total=len(items))

    for item in items:
        try:
            await _reconcile_item(session, vault_id, item, stats)
        except Exception:
            logger.error("Error syncing document %s (%s)", item.name, item.id, exc_info=True)
            await session.rollback()
            stats.errors += 1

    if not items and not keep_remote_ids:
        logger.warning(
            "Remote listing for vault %d is empty; skipping deletion of tracked items", vault_id
        )
        return stats

    try:
        present = {item.id for item in items} | set(keep_remote_ids)
        deleted = await record_store.delete_missing(session, vault_id, present)
    except Exception:
        logger.error("Error cleaning up deleted documents for vault %d", vault_id, exc_info=True)
        await session.rollback()
        stats.errors += 1
    else:
        stats.deleted = len(deleted)
        if deleted:
            logger.info("Cleaned up %d deleted documents from vault %d", len(deleted), vault_id)

    return stats
