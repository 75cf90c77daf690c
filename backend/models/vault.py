"""Vault model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base, UTCDateTime

if TYPE_CHECKING:
    from backend.models.document import TrackedItem
    from backend.models.sync import SyncRun


class Vault(Base):
    """A destination that mirrors one reMarkable account's documents."""

    __tablename__ = "vaults"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    local_path: Mapped[str] = mapped_column(Text, nullable=False)
    sync_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    items: Mapped[list[TrackedItem]] = relationship(
        back_populates="vault", cascade="all, delete-orphan", passive_deletes=True
    )
    sync_runs: Mapped[list[SyncRun]] = relationship(
        back_populates="vault", cascade="all, delete-orphan", passive_deletes=True
    )
