"""Background maintenance loops for the sync service.

Two tasks run as plain asyncio loops:
1. purge_expired_operations: every DEDUPE_CLEANUP_INTERVAL_SECONDS (10 min),
   delete expired operation ids. The store may expire rows on its own,
   but background expiry can lag, so the sweep keeps the store bounded.
2. purge_old_events: every 6 hours, drop audit events past the retention
   window.

Each task runs once at start and then on its interval. A failing run is
logged and the loop carries on.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

import structlog

from src.contact_sync.stores.base import AuditLog
from src.contact_sync.sync.dedupe import DedupeGuard

logger = structlog.get_logger(__name__)

DEFAULT_INTERVALS = {
    "purge_expired_operations": 10 * 60,  # 10 minutes
    "purge_old_events": 6 * 60 * 60,      # 6 hours
}


def build_maintenance_tasks(
    dedupe: DedupeGuard,
    audit: AuditLog,
    retention_days: int = 90,
) -> dict[str, Callable[[], Awaitable[int]]]:
    """Task callables keyed by name, runnable directly from tests."""

    async def purge_expired_operations_task() -> int:
        try:
            removed = await dedupe.purge_expired()
            logger.info("scheduler.operations_purged", removed=removed)
            return removed
        except Exception:
            logger.warning("scheduler.operations_purge_failed", exc_info=True)
            return 0

    async def purge_old_events_task() -> int:
        try:
            cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
            removed = await audit.purge_older_than(cutoff)
            logger.info("scheduler.events_purged", removed=removed, retention_days=retention_days)
            return removed
        except Exception:
            logger.warning("scheduler.events_purge_failed", exc_info=True)
            return 0

    return {
        "purge_expired_operations": purge_expired_operations_task,
        "purge_old_events": purge_old_events_task,
    }


class MaintenanceScheduler:
    """Runs maintenance tasks as background asyncio loops.

    Args:
        tasks: Mapping of task name to async callable.
        intervals: Seconds between runs per task name; unknown names run hourly.
    """

    def __init__(
        self,
        tasks: dict[str, Callable[[], Awaitable[int]]],
        intervals: dict[str, float] | None = None,
    ) -> None:
        self._tasks = tasks
        self._intervals = {**DEFAULT_INTERVALS, **(intervals or {})}
        self._running: list[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._running)

    def start(self) -> None:
        if self.is_running:
            logger.debug("scheduler.already_running")
            return

        for task_name, task_fn in self._tasks.items():
            interval = self._intervals.get(task_name, 3600)

            async def _loop(fn=task_fn, name=task_name, sleep=interval):
                while True:
                    try:
                        await fn()
                        await asyncio.sleep(sleep)
                    except asyncio.CancelledError:
                        logger.info("scheduler.task_cancelled", task=name)
                        raise
                    except Exception:
                        logger.warning("scheduler.task_loop_error", task=name, exc_info=True)
                        await asyncio.sleep(sleep)

            self._running.append(asyncio.create_task(_loop(), name=f"contact_sync_{task_name}"))

        logger.info(
            "scheduler.background_tasks_started",
            task_count=len(self._running),
            tasks=list(self._tasks.keys()),
        )

    async def stop(self) -> None:
        for task in self._running:
            task.cancel()
        await asyncio.gather(*self._running, return_exceptions=True)
        self._running.clear()
        logger.info("scheduler.stopped")
