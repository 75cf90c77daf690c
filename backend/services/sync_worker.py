"""Background execution of sync runs."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Coroutine

logger = logging.getLogger(__name__)


class SyncWorker:
    """Runs sync coroutines as background tasks, keyed by vault id.

    Holds strong references so tasks are not garbage collected mid-run. The
    sync ledger, not this registry, is the source of truth for run status.
    """

    def __init__(self) -> None:
        self._by_vault: dict[int, asyncio.Task[Any]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    def submit(self, vault_id: int, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=f"sync-vault-{vault_id}")
        self._tasks.add(task)
        self._by_vault[vault_id] = task

        def _on_done(done: asyncio.Task[Any]) -> None:
            self._tasks.discard(done)
            if self._by_vault.get(vault_id) is done:
                del self._by_vault[vault_id]
            if done.cancelled():
                logger.warning("Sync task for vault %d was cancelled", vault_id)
            elif done.exception() is not None:
                logger.error(
                    "Sync task for vault %d crashed", vault_id, exc_info=done.exception()
                )

        task.add_done_callback(_on_done)
        return task

    def is_running(self, vault_id: int) -> bool:
        task = self._by_vault.get(vault_id)
        return task is not None and not task.done()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every outstanding task to finish."""
        while True:
            outstanding = [task for task in self._tasks if not task.done()]
            if not outstanding:
                return
            await asyncio.gather(*outstanding, return_exceptions=True)
