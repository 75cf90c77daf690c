"""Tracked document models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base, UTCDateTime

if TYPE_CHECKING:
    from backend.models.vault import Vault


class FileKind(StrEnum):
    """Source format of a remote document."""

    FOLDER = "folder"
    PDF = "pdf"
    EPUB = "epub"
    NOTEBOOK = "notebook"


class TrackedItem(Base):
    """Last-known synchronized state of one remote item within a vault."""

    __tablename__ = "tracked_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vault_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("vaults.id", ondelete="CASCADE"), nullable=False
    )
    remote_id: Mapped[str] = mapped_column(String, nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    local_path: Mapped[str] = mapped_column(Text, nullable=False)
    last_modified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    remote_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    synced_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    content_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    parent_remote_id: Mapped[str | None] = mapped_column(String, nullable=True)
    is_folder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    file_kind: Mapped[str] = mapped_column(String, nullable=False)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    vault: Mapped[Vault] = relationship(back_populates="items")

    __table_args__ = (
        UniqueConstraint("vault_id", "remote_id", name="uq_tracked_items_vault_remote"),
        Index("idx_tracked_items_vault_processed", "vault_id", "processed"),
    )
