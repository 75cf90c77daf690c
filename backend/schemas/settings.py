"""reMarkable connection settings schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RemarkableConnectRequest(BaseModel):
    """One-time code from my.remarkable.com used to register this service."""

    code: str = Field(min_length=1, max_length=64)


class RemarkableSettingsResponse(BaseModel):
    configured: bool
