"""Shared test fixtures for reMarkidian."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.config import Settings
from backend.database import create_engine
from backend.models.base import Base
from backend.models.document import FileKind
from backend.remote.parser import ItemKind, RemoteItem
from backend.services.settings_service import store_device_token
from backend.services.sync_service import SyncOrchestrator
from backend.services.sync_worker import SyncWorker
from backend.services.vault_service import create_vault

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from backend.models.vault import Vault

TEST_SECRET_KEY = "test-secret-key-with-at-least-32-characters"


def make_item(
    item_id: str,
    name: str | None = None,
    *,
    folder: bool = False,
    parent_id: str | None = None,
    version: int = 1,
    last_modified_at: datetime | None = None,
) -> RemoteItem:
    """Build a canonical remote item for tests."""
    display = name if name is not None else item_id
    if folder:
        file_kind = FileKind.FOLDER
    elif display.endswith(".pdf"):
        file_kind = FileKind.PDF
    else:
        file_kind = FileKind.NOTEBOOK
    return RemoteItem(
        id=item_id,
        name=display,
        kind=ItemKind.FOLDER if folder else ItemKind.FILE,
        parent_id=parent_id,
        version=version,
        last_modified_at=last_modified_at,
        file_kind=file_kind,
    )


def raw_record(
    item_id: str,
    name: str | None = None,
    *,
    folder: bool = False,
    parent: str = "",
    version: int = 1,
    modified: str | None = "2024-03-01T10:00:00Z",
) -> dict[str, Any]:
    """Build a record shaped like the reMarkable Cloud listing."""
    record: dict[str, Any] = {
        "ID": item_id,
        "VissibleName": name if name is not None else item_id,
        "Type": "CollectionType" if folder else "DocumentType",
        "Parent": parent,
        "Version": version,
        "Bookmarked": False,
        "CurrentPage": 0,
        "Success": True,
    }
    if modified is not None:
        record["ModifiedClient"] = modified
    return record


class FakeSource:
    """In-memory document source that returns a fixed listing."""

    def __init__(self, documents: list[dict[str, Any]] | None = None) -> None:
        self.documents = documents or []
        self.calls = 0
        self.tokens: list[str] = []
        self.error: Exception | None = None

    async def list_documents(self) -> list[dict[str, Any]]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.documents)

    def factory(self, token: str) -> FakeSource:
        self.tokens.append(token)
        return self


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    db_path = tmp_path / "test.db"
    return Settings(
        _env_file=None,
        secret_key=TEST_SECRET_KEY,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        remote_max_retries=0,
        remote_backoff_seconds=0,
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the full schema."""
    engine, _ = create_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def vault(db_session: AsyncSession) -> Vault:
    return await create_vault(db_session, name="Notes", local_path="/tmp/vaults/notes")


@pytest.fixture
async def configured_token(db_session: AsyncSession) -> str:
    """Store an encrypted device token so syncs may start."""
    await store_device_token(db_session, "device-token", TEST_SECRET_KEY)
    return "device-token"


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def orchestrator(
    session_factory: async_sessionmaker[AsyncSession], fake_source: FakeSource
) -> SyncOrchestrator:
    return SyncOrchestrator(
        session_factory=session_factory,
        client_factory=fake_source.factory,
        worker=SyncWorker(),
        secret_key=TEST_SECRET_KEY,
    )
