"""Tests for sync orchestration and the sync ledger."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from backend.exceptions import ConfigurationError, RemoteApiError, SyncConflictError, VaultNotFoundError
from backend.models.document import TrackedItem
from backend.models.sync import SyncKind, SyncRun, SyncStatus
from backend.services import record_store
from backend.services.sync_service import (
    STOPPED_MESSAGE,
    SyncOrchestrator,
    get_run,
    get_status,
    list_history,
    stop_sync,
)
from backend.services.sync_worker import SyncWorker
from backend.services.vault_service import create_vault, get_vault
from tests.conftest import TEST_SECRET_KEY, FakeSource, raw_record

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from backend.models.vault import Vault


class BlockingSource(FakeSource):
    """Holds the listing until ``release`` is set."""

    def __init__(self, documents: list[dict[str, Any]] | None = None) -> None:
        super().__init__(documents)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def list_documents(self) -> list[dict[str, Any]]:
        self.entered.set()
        await self.release.wait()
        return await super().list_documents()


@pytest.fixture
def blocking_source() -> BlockingSource:
    return BlockingSource([raw_record("d1")])


@pytest.fixture
def blocking_orchestrator(
    session_factory: async_sessionmaker[AsyncSession], blocking_source: BlockingSource
) -> SyncOrchestrator:
    return SyncOrchestrator(
        session_factory=session_factory,
        client_factory=blocking_source.factory,
        worker=SyncWorker(),
        secret_key=TEST_SECRET_KEY,
    )


async def _run_count(session_factory: async_sessionmaker[AsyncSession]) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count(SyncRun.id)))).scalar_one()


async def _finish(orchestrator: SyncOrchestrator, run_id: int) -> SyncRun:
    await orchestrator.worker.drain()
    async with orchestrator.session_factory() as session:
        run = await get_run(session, run_id)
    assert run is not None
    return run


@pytest.mark.usefixtures("configured_token")
class TestRunSync:
    async def test_successful_run(
        self, orchestrator: SyncOrchestrator, fake_source: FakeSource, vault: Vault
    ) -> None:
        fake_source.documents = [
            raw_record("f1", "Work", folder=True),
            raw_record("d1", "Notes", parent="f1"),
            raw_record("d2", "Paper.pdf"),
        ]
        run = await orchestrator.start_sync(vault.id)
        finished = await _finish(orchestrator, run.id)

        assert finished.status == SyncStatus.SUCCESS
        assert finished.kind == SyncKind.MANUAL
        assert finished.items_synced == 3
        assert finished.error_count == 0
        assert finished.completed_at is not None
        assert fake_source.tokens == ["device-token"]
        async with orchestrator.session_factory() as session:
            assert (await get_vault(session, vault.id)).last_synced_at is not None

    async def test_second_run_syncs_nothing(
        self, orchestrator: SyncOrchestrator, fake_source: FakeSource, vault: Vault
    ) -> None:
        fake_source.documents = [raw_record("d1"), raw_record("d2")]
        first = await orchestrator.start_sync(vault.id)
        await _finish(orchestrator, first.id)
        second = await orchestrator.start_sync(vault.id)
        finished = await _finish(orchestrator, second.id)

        assert finished.status == SyncStatus.SUCCESS
        assert finished.items_synced == 0

    async def test_rejected_records_counted_as_errors(
        self, orchestrator: SyncOrchestrator, fake_source: FakeSource, vault: Vault
    ) -> None:
        fake_source.documents = [raw_record("d1"), {"VissibleName": "no id"}]
        run = await orchestrator.start_sync(vault.id)
        finished = await _finish(orchestrator, run.id)

        assert finished.status == SyncStatus.SUCCESS
        assert finished.items_synced == 1
        assert finished.error_count == 1

    async def test_listed_rows_survive_bad_records(
        self, orchestrator: SyncOrchestrator, fake_source: FakeSource, vault: Vault
    ) -> None:
        fake_source.documents = [raw_record("d1"), raw_record("d2"), raw_record("d3")]
        first = await orchestrator.start_sync(vault.id)
        await _finish(orchestrator, first.id)

        odd_version = raw_record("d2")
        odd_version["Version"] = "2b"
        odd_version["ModifiedClient"] = 1709287200000
        bad_parent = raw_record("d3")
        bad_parent["Parent"] = 42
        fake_source.documents = [raw_record("d1"), odd_version, bad_parent]
        second = await orchestrator.start_sync(vault.id)
        finished = await _finish(orchestrator, second.id)

        assert finished.status == SyncStatus.SUCCESS
        assert finished.error_count == 1
        async with orchestrator.session_factory() as session:
            for remote_id in ("d1", "d2", "d3"):
                assert await record_store.get_item(session, vault.id, remote_id) is not None

    async def test_remote_failure_marks_run_failed(
        self, orchestrator: SyncOrchestrator, fake_source: FakeSource, vault: Vault
    ) -> None:
        fake_source.error = RemoteApiError("Document listing failed: 503 Service Unavailable")
        run = await orchestrator.start_sync(vault.id)
        finished = await _finish(orchestrator, run.id)

        assert finished.status == SyncStatus.ERROR
        assert finished.error_message == "Document listing failed: 503 Service Unavailable"
        assert finished.completed_at is not None
        async with orchestrator.session_factory() as session:
            assert (await get_vault(session, vault.id)).last_synced_at is None

    async def test_cyclic_listing_fails_without_writes(
        self, orchestrator: SyncOrchestrator, fake_source: FakeSource, vault: Vault
    ) -> None:
        fake_source.documents = [
            raw_record("a", folder=True, parent="b"),
            raw_record("b", folder=True, parent="a"),
        ]
        run = await orchestrator.start_sync(vault.id)
        finished = await _finish(orchestrator, run.id)

        assert finished.status == SyncStatus.ERROR
        async with orchestrator.session_factory() as session:
            count = await session.execute(select(func.count(TrackedItem.id)))
            assert count.scalar_one() == 0

    async def test_scheduled_kind_recorded(
        self, orchestrator: SyncOrchestrator, vault: Vault
    ) -> None:
        run = await orchestrator.start_sync(vault.id, kind=SyncKind.SCHEDULED)
        finished = await _finish(orchestrator, run.id)
        assert finished.kind == SyncKind.SCHEDULED


class TestStartSync:
    async def test_requires_device_token(
        self,
        orchestrator: SyncOrchestrator,
        session_factory: async_sessionmaker[AsyncSession],
        vault: Vault,
    ) -> None:
        with pytest.raises(ConfigurationError):
            await orchestrator.start_sync(vault.id)
        assert await _run_count(session_factory) == 0

    @pytest.mark.usefixtures("configured_token")
    async def test_unknown_vault(
        self, orchestrator: SyncOrchestrator, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        with pytest.raises(VaultNotFoundError):
            await orchestrator.start_sync(12345)
        assert await _run_count(session_factory) == 0

    @pytest.mark.usefixtures("configured_token")
    async def test_returns_before_run_completes(
        self,
        blocking_orchestrator: SyncOrchestrator,
        blocking_source: BlockingSource,
        vault: Vault,
    ) -> None:
        run = await blocking_orchestrator.start_sync(vault.id)
        await blocking_source.entered.wait()

        assert run.status == SyncStatus.IN_PROGRESS
        assert blocking_orchestrator.worker.is_running(vault.id)

        blocking_source.release.set()
        finished = await _finish(blocking_orchestrator, run.id)
        assert finished.status == SyncStatus.SUCCESS
        assert not blocking_orchestrator.worker.is_running(vault.id)

    @pytest.mark.usefixtures("configured_token")
    async def test_concurrent_start_rejected(
        self,
        blocking_orchestrator: SyncOrchestrator,
        blocking_source: BlockingSource,
        session_factory: async_sessionmaker[AsyncSession],
        vault: Vault,
    ) -> None:
        run = await blocking_orchestrator.start_sync(vault.id)
        await blocking_source.entered.wait()

        with pytest.raises(SyncConflictError):
            await blocking_orchestrator.start_sync(vault.id)
        assert await _run_count(session_factory) == 1

        blocking_source.release.set()
        await _finish(blocking_orchestrator, run.id)

    @pytest.mark.usefixtures("configured_token")
    async def test_other_vault_may_sync_concurrently(
        self,
        blocking_orchestrator: SyncOrchestrator,
        blocking_source: BlockingSource,
        db_session: AsyncSession,
        vault: Vault,
    ) -> None:
        other = await create_vault(db_session, name="Other", local_path="/tmp/vaults/other")
        first = await blocking_orchestrator.start_sync(vault.id)
        second = await blocking_orchestrator.start_sync(other.id)
        assert first.id != second.id

        blocking_source.release.set()
        await blocking_orchestrator.worker.drain()

    @pytest.mark.usefixtures("configured_token")
    async def test_unique_index_rejects_race(
        self,
        blocking_orchestrator: SyncOrchestrator,
        blocking_source: BlockingSource,
        session_factory: async_sessionmaker[AsyncSession],
        vault: Vault,
    ) -> None:
        run = await blocking_orchestrator.start_sync(vault.id)
        await blocking_source.entered.wait()

        with (
            patch(
                "backend.services.sync_service.get_active_run",
                new=AsyncMock(return_value=None),
            ),
            pytest.raises(SyncConflictError),
        ):
            await blocking_orchestrator.start_sync(vault.id)
        assert await _run_count(session_factory) == 1

        blocking_source.release.set()
        await _finish(blocking_orchestrator, run.id)


@pytest.mark.usefixtures("configured_token")
class TestStopSync:
    async def test_stopped_run_stays_stopped(
        self,
        blocking_orchestrator: SyncOrchestrator,
        blocking_source: BlockingSource,
        session_factory: async_sessionmaker[AsyncSession],
        vault: Vault,
    ) -> None:
        run = await blocking_orchestrator.start_sync(vault.id)
        await blocking_source.entered.wait()

        async with session_factory() as session:
            stored = await get_run(session, run.id)
            assert stored is not None
            assert await stop_sync(session, stored) is True
            assert stored.status == SyncStatus.ERROR
            assert stored.error_message == STOPPED_MESSAGE

        blocking_source.release.set()
        finished = await _finish(blocking_orchestrator, run.id)

        assert finished.status == SyncStatus.ERROR
        assert finished.error_message == STOPPED_MESSAGE
        async with session_factory() as session:
            assert (await get_vault(session, vault.id)).last_synced_at is None

    async def test_stop_finished_run_is_noop(
        self, orchestrator: SyncOrchestrator, vault: Vault
    ) -> None:
        run = await orchestrator.start_sync(vault.id)
        await _finish(orchestrator, run.id)

        async with orchestrator.session_factory() as session:
            stored = await get_run(session, run.id)
            assert stored is not None
            assert await stop_sync(session, stored) is False
            assert stored.status == SyncStatus.SUCCESS

    async def test_new_run_allowed_after_stop(
        self,
        blocking_orchestrator: SyncOrchestrator,
        blocking_source: BlockingSource,
        session_factory: async_sessionmaker[AsyncSession],
        vault: Vault,
    ) -> None:
        run = await blocking_orchestrator.start_sync(vault.id)
        await blocking_source.entered.wait()
        async with session_factory() as session:
            stored = await get_run(session, run.id)
            assert stored is not None
            await stop_sync(session, stored)

        blocking_source.release.set()
        next_run = await blocking_orchestrator.start_sync(vault.id)
        assert next_run.id != run.id
        await blocking_orchestrator.worker.drain()


@pytest.mark.usefixtures("configured_token")
class TestHistory:
    async def test_history_newest_first_with_vault_name(
        self, orchestrator: SyncOrchestrator, db_session: AsyncSession, vault: Vault
    ) -> None:
        first = await orchestrator.start_sync(vault.id)
        await _finish(orchestrator, first.id)
        second = await orchestrator.start_sync(vault.id)
        await _finish(orchestrator, second.id)

        history = await list_history(db_session)
        assert [entry.run.id for entry in history] == [second.id, first.id]
        assert {entry.vault_name for entry in history} == {"Notes"}

        limited = await list_history(db_session, vault_id=vault.id, limit=1, offset=1)
        assert [entry.run.id for entry in limited] == [first.id]

    async def test_history_filtered_by_vault(
        self, orchestrator: SyncOrchestrator, db_session: AsyncSession, vault: Vault
    ) -> None:
        other = await create_vault(db_session, name="Other", local_path="/tmp/vaults/other")
        run = await orchestrator.start_sync(other.id)
        await _finish(orchestrator, run.id)

        assert await list_history(db_session, vault_id=vault.id) == []
        assert len(await list_history(db_session, vault_id=other.id)) == 1

    async def test_status_reports_active_and_latest(
        self,
        blocking_orchestrator: SyncOrchestrator,
        blocking_source: BlockingSource,
        session_factory: async_sessionmaker[AsyncSession],
        vault: Vault,
    ) -> None:
        run = await blocking_orchestrator.start_sync(vault.id)
        await blocking_source.entered.wait()

        async with session_factory() as session:
            status = await get_status(session)
        assert [entry.run.id for entry in status.active] == [run.id]

        blocking_source.release.set()
        await _finish(blocking_orchestrator, run.id)

        async with session_factory() as session:
            status = await get_status(session)
        assert status.active == []
        assert [entry.run.status for entry in status.latest] == [SyncStatus.SUCCESS]
