"""Periodic scheduled syncs for every sync-enabled vault."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from backend.exceptions import ConfigurationError, SyncConflictError, VaultNotFoundError
from backend.models.sync import SyncKind
from backend.services.vault_service import list_vaults

if TYPE_CHECKING:
    from backend.services.sync_service import SyncOrchestrator

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Starts a ``scheduled`` run for each enabled vault every ``interval_seconds``."""

    def __init__(self, orchestrator: SyncOrchestrator, interval_seconds: float) -> None:
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    async def run_once(self) -> list[int]:
        """Start runs for all enabled vaults. Returns the ids of the runs started."""
        async with self.orchestrator.session_factory() as session:
            vault_ids = [vault.id for vault in await list_vaults(session, enabled_only=True)]

        started: list[int] = []
        for vault_id in vault_ids:
            try:
                run = await self.orchestrator.start_sync(vault_id, kind=SyncKind.SCHEDULED)
            except SyncConflictError:
                logger.info("Skipping scheduled sync for vault %d: already running", vault_id)
            except (ConfigurationError, VaultNotFoundError) as exc:
                logger.warning("Skipping scheduled sync for vault %d: %s", vault_id, exc)
            else:
                started.append(run.id)
        return started

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            if self._stop_event.is_set():
                break
            try:
                await self.run_once()
            except Exception:
                logger.error("Scheduled sync pass failed", exc_info=True)

    def start(self) -> None:
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name="sync-scheduler")
        logger.info("Sync scheduler started (every %.0f s)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("Sync scheduler stopped")
