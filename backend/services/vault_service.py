"""Vault CRUD."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from backend.exceptions import VaultNotFoundError
from backend.models.vault import Vault
from backend.services.datetime_service import now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


async def list_vaults(session: AsyncSession, *, enabled_only: bool = False) -> list[Vault]:
    stmt = select(Vault).order_by(Vault.name)
    if enabled_only:
        stmt = stmt.where(Vault.sync_enabled.is_(True))
    return list((await session.execute(stmt)).scalars().all())


async def get_vault(session: AsyncSession, vault_id: int) -> Vault:
    """Return the vault or raise VaultNotFoundError."""
    vault = await session.get(Vault, vault_id)
    if vault is None:
        raise VaultNotFoundError(vault_id)
    return vault


async def create_vault(
    session: AsyncSession, *, name: str, local_path: str, sync_enabled: bool = True
) -> Vault:
    now = now_utc()
    vault = Vault(
        name=name,
        local_path=local_path,
        sync_enabled=sync_enabled,
        created_at=now,
        updated_at=now,
    )
    session.add(vault)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        msg = f"Vault '{name}' already exists"
        raise ValueError(msg) from exc
    logger.info("Created vault %s (%d)", vault.name, vault.id)
    return vault


async def update_vault(
    session: AsyncSession,
    vault_id: int,
    *,
    name: str | None = None,
    local_path: str | None = None,
    sync_enabled: bool | None = None,
) -> Vault:
    vault = await get_vault(session, vault_id)
    if name is not None:
        vault.name = name
    if local_path is not None:
        vault.local_path = local_path
    if sync_enabled is not None:
        vault.sync_enabled = sync_enabled
    vault.updated_at = now_utc()
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        msg = f"Vault '{name}' already exists"
        raise ValueError(msg) from exc
    return vault


async def delete_vault(session: AsyncSession, vault_id: int) -> None:
    """Delete a vault together with its tracked items and sync history."""
    vault = await get_vault(session, vault_id)
    await session.delete(vault)
    await session.commit()
    logger.info("Deleted vault %d", vault_id)
