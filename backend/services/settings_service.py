"""Persisted application settings, including the reMarkable device token."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from backend.models.setting import AppSetting
from backend.services.crypto_service import decrypt_credential, encrypt_credential
from backend.services.datetime_service import now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEVICE_TOKEN_KEY = "remarkable_device_token"


async def get_setting(session: AsyncSession, key: str) -> str | None:
    row = await session.get(AppSetting, key)
    return row.value if row is not None else None


async def set_setting(
    session: AsyncSession, key: str, value: str, description: str | None = None
) -> None:
    """Insert or replace a setting and commit."""
    row = await session.get(AppSetting, key)
    if row is None:
        session.add(
            AppSetting(key=key, value=value, description=description, updated_at=now_utc())
        )
    else:
        row.value = value
        row.updated_at = now_utc()
        if description is not None:
            row.description = description
    await session.commit()


async def delete_setting(session: AsyncSession, key: str) -> bool:
    row = await session.get(AppSetting, key)
    if row is None:
        return False
    await session.delete(row)
    await session.commit()
    return True


async def store_device_token(session: AsyncSession, token: str, secret_key: str) -> None:
    """Encrypt and persist the reMarkable device token."""
    await set_setting(
        session,
        DEVICE_TOKEN_KEY,
        encrypt_credential(token, secret_key),
        description="reMarkable Cloud device token (encrypted)",
    )
    logger.info("Stored reMarkable device token")


async def load_device_token(session: AsyncSession, secret_key: str) -> str | None:
    """Return the decrypted device token, or None when not configured."""
    stored = await get_setting(session, DEVICE_TOKEN_KEY)
    if not stored:
        return None
    return decrypt_credential(stored, secret_key)


async def has_device_token(session: AsyncSession) -> bool:
    return bool(await get_setting(session, DEVICE_TOKEN_KEY))


async def clear_device_token(session: AsyncSession) -> bool:
    return await delete_setting(session, DEVICE_TOKEN_KEY)
