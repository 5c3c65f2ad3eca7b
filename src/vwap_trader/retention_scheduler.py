"""Daily sweep of cycle records past the retention horizon."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from vwap_trader.record_store import RecordStore

logger = structlog.get_logger()

SWEEP_INTERVAL_SECONDS = 86400


class RecordRetentionScheduler:
    """Background task that deletes old records once a day, starting immediately."""

    def __init__(
        self,
        store: RecordStore,
        retention_days: int,
        interval_seconds: float = SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self.store = store
        self.retention_days = retention_days
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None
        self._running = False

    def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("retention_scheduler_started", days=self.retention_days)

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("retention_scheduler_stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("retention_sweep_error")

            await asyncio.sleep(self.interval_seconds)

    async def sweep(self) -> int:
        removed = await self.store.clean_older_than(self.retention_days)
        logger.info("retention_sweep", removed=removed, days=self.retention_days)
        return removed
