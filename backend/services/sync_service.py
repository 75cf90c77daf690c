"""Sync orchestration: ledger bookkeeping around fetch, parse, and reconcile."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from backend.exceptions import ConfigurationError, SyncConflictError
from backend.models.sync import SyncKind, SyncRun, SyncStatus
from backend.models.vault import Vault
from backend.remote.parser import parse_documents
from backend.services.datetime_service import now_utc
from backend.services.reconcile_service import ReconcileStats, reconcile
from backend.services.settings_service import has_device_token, load_device_token
from backend.services.vault_service import get_vault

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from backend.remote.base import DocumentSource
    from backend.services.sync_worker import SyncWorker

logger = logging.getLogger(__name__)

STOPPED_MESSAGE = "Manually stopped"


@dataclass
class HistoryEntry:
    run: SyncRun
    vault_name: str | None


@dataclass
class SyncStatusSummary:
    """Runs currently in flight plus the latest run of every vault."""

    active: list[HistoryEntry]
    latest: list[HistoryEntry]


async def get_active_run(session: AsyncSession, vault_id: int) -> SyncRun | None:
    stmt = select(SyncRun).where(
        SyncRun.vault_id == vault_id, SyncRun.status == SyncStatus.IN_PROGRESS
    )
    return (await session.execute(stmt)).scalars().first()


async def get_run(session: AsyncSession, run_id: int) -> SyncRun | None:
    return await session.get(SyncRun, run_id)


async def _close_run(
    session: AsyncSession,
    run_id: int,
    *,
    status: SyncStatus,
    items_synced: int = 0,
    error_count: int = 0,
    error_message: str | None = None,
) -> bool:
    """Move an in-progress run to a final status. Returns False if it was already closed."""
    result = await session.execute(
        update(SyncRun)
        .where(SyncRun.id == run_id, SyncRun.status == SyncStatus.IN_PROGRESS)
        .values(
            status=status,
            items_synced=items_synced,
            error_count=error_count,
            error_message=error_message,
            completed_at=now_utc(),
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return bool(result.rowcount)


async def stop_sync(session: AsyncSession, run: SyncRun) -> bool:
    """Mark an in-progress run as stopped.

    Advisory only: the ledger entry is closed, but work already running in
    the background is not interrupted.
    """
    closed = await _close_run(
        session, run.id, status=SyncStatus.ERROR, error_message=STOPPED_MESSAGE
    )
    if closed:
        await session.refresh(run)
        logger.info("Sync %d stopped manually for vault %d", run.id, run.vault_id)
    return closed


async def list_history(
    session: AsyncSession,
    vault_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[HistoryEntry]:
    stmt = select(SyncRun, Vault.name).outerjoin(Vault, SyncRun.vault_id == Vault.id)
    if vault_id is not None:
        stmt = stmt.where(SyncRun.vault_id == vault_id)
    stmt = stmt.order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(limit).offset(offset)
    rows = await session.execute(stmt)
    return [HistoryEntry(run=run, vault_name=name) for run, name in rows]


async def get_status(session: AsyncSession) -> SyncStatusSummary:
    active_rows = await session.execute(
        select(SyncRun, Vault.name)
        .join(Vault, SyncRun.vault_id == Vault.id)
        .where(SyncRun.status == SyncStatus.IN_PROGRESS)
        .order_by(SyncRun.started_at.desc())
    )
    latest_ids = (
        select(func.max(SyncRun.id).label("run_id")).group_by(SyncRun.vault_id).subquery()
    )
    latest_rows = await session.execute(
        select(SyncRun, Vault.name)
        .join(Vault, SyncRun.vault_id == Vault.id)
        .where(SyncRun.id.in_(select(latest_ids.c.run_id)))
        .order_by(Vault.name)
    )
    return SyncStatusSummary(
        active=[HistoryEntry(run=run, vault_name=name) for run, name in active_rows],
        latest=[HistoryEntry(run=run, vault_name=name) for run, name in latest_rows],
    )


class SyncOrchestrator:
    """Starts sync runs and carries them out in the background.

    Every run gets its own database session from ``session_factory``;
    ``client_factory`` builds a document source from the decrypted device
    token.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client_factory: Callable[[str], DocumentSource],
        worker: SyncWorker,
        secret_key: str,
    ) -> None:
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.worker = worker
        self.secret_key = secret_key

    async def start_sync(self, vault_id: int, kind: SyncKind = SyncKind.MANUAL) -> SyncRun:
        """Open a ledger entry and schedule the run; returns without waiting for it.

        Raises VaultNotFoundError, ConfigurationError when no device token is
        stored, or SyncConflictError when the vault already has a run in
        progress. None of these leave a ledger row behind.
        """
        async with self.session_factory() as session:
            vault = await get_vault(session, vault_id)
            if not await has_device_token(session):
                raise ConfigurationError("reMarkable device token not configured")
            if await get_active_run(session, vault_id) is not None:
                raise SyncConflictError(vault_id)

            run = SyncRun(
                vault_id=vault_id,
                kind=kind,
                status=SyncStatus.IN_PROGRESS,
                items_synced=0,
                error_count=0,
                started_at=now_utc(),
            )
            session.add(run)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise SyncConflictError(vault_id) from exc

            logger.info("%s sync %d started for vault %s", kind.capitalize(), run.id, vault.name)

        self.worker.submit(vault_id, self.run_sync(vault_id, run.id))
        return run

    async def _fetch_and_reconcile(
        self, session: AsyncSession, vault_id: int
    ) -> tuple[ReconcileStats, int]:
        token = await load_device_token(session, self.secret_key)
        if not token:
            raise ConfigurationError("reMarkable device token not configured")

        source = self.client_factory(token)
        raw_documents = await source.list_documents()
        parsed = parse_documents(raw_documents)
        stats = await reconcile(
            session, vault_id, parsed.items, keep_remote_ids=parsed.rejected_ids
        )
        return stats, parsed.rejected

    async def run_sync(self, vault_id: int, run_id: int) -> SyncRun | None:
        """Carry out one run and record its outcome in the ledger.

        Failures before or during reconciliation close the run as ``error``
        and leave the vault's ``last_synced_at`` untouched. A run stopped in
        the meantime keeps its stopped status.
        """
        try:
            async with self.session_factory() as session:
                stats, rejected = await self._fetch_and_reconcile(session, vault_id)
                closed = await _close_run(
                    session,
                    run_id,
                    status=SyncStatus.SUCCESS,
                    items_synced=stats.items_synced,
                    error_count=stats.errors + rejected,
                )
                if closed:
                    vault = await get_vault(session, vault_id)
                    vault.last_synced_at = now_utc()
                    await session.commit()
                    logger.info("Sync %d completed for vault %d: %s", run_id, vault_id, stats)
                else:
                    logger.warning("Sync %d was closed before it finished: %s", run_id, stats)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.error("Sync %d failed for vault %d: %s", run_id, vault_id, message, exc_info=exc)
            async with self.session_factory() as session:
                await _close_run(
                    session, run_id, status=SyncStatus.ERROR, error_message=message
                )

        async with self.session_factory() as session:
            return await get_run(session, run_id)
