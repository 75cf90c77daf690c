"""reMarkable connection settings endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.deps import get_session, get_settings
from backend.config import Settings
from backend.remote.client import RemarkableClient
from backend.schemas.settings import RemarkableConnectRequest, RemarkableSettingsResponse
from backend.services.settings_service import (
    clear_device_token,
    has_device_token,
    store_device_token,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("/remarkable", response_model=RemarkableSettingsResponse)
async def remarkable_settings(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> RemarkableSettingsResponse:
    """Report whether a device token is stored. The token itself is never returned."""
    return RemarkableSettingsResponse(configured=await has_device_token(session))


@router.post("/remarkable/connect", response_model=RemarkableSettingsResponse)
async def remarkable_connect(
    body: RemarkableConnectRequest,
    request: Request,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> RemarkableSettingsResponse:
    """Register this service as a device and store the resulting token."""
    client = RemarkableClient.from_settings(
        settings, transport=request.app.state.remote_transport
    )
    token = await client.register_device(body.code)
    await store_device_token(session, token, settings.secret_key)
    return RemarkableSettingsResponse(configured=True)


@router.delete("/remarkable", status_code=status.HTTP_204_NO_CONTENT)
async def remarkable_disconnect(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> None:
    await clear_device_token(session)
    logger.info("Removed reMarkable device token")
