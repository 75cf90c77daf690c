"""SQLAlchemy ORM models for reMarkidian."""

from backend.models.base import Base
from backend.models.document import FileKind, TrackedItem
from backend.models.setting import AppSetting
from backend.models.sync import SyncKind, SyncRun, SyncStatus
from backend.models.vault import Vault

__all__ = [
    "AppSetting",
    "Base",
    "FileKind",
    "SyncKind",
    "SyncRun",
    "SyncStatus",
    "TrackedItem",
    "Vault",
]
