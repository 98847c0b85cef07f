"""Background timers for the sync engine.

Two independent asyncio tasks:

- the full-sync loop calls ``perform_sync()`` every ``interval`` seconds
  (not started when the interval is ``None`` or 0);
- the drain loop calls ``process_pending_changes()`` every
  ``drain_interval`` seconds.  It does not take the run guard.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .engine import SyncEngine

logger = logging.getLogger(__name__)

DRAIN_INTERVAL = 2.0


class SyncScheduler:
    """Own the periodic sync and drain tasks for one engine."""

    def __init__(
        self,
        engine: SyncEngine,
        interval: float | None,
        drain_interval: float = DRAIN_INTERVAL,
        logger: logging.Logger = logger,
    ) -> None:
        self.engine = engine
        self.interval = interval or None
        self.drain_interval = drain_interval
        self._logger = logger
        self._sync_task: asyncio.Task | None = None
        self._drain_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return any(
            task is not None and not task.done()
            for task in (self._sync_task, self._drain_task)
        )

    def start(self) -> None:
        """Start both loops on the running event loop."""
        if self.running:
            return
        if self.interval:
            self._sync_task = asyncio.create_task(
                self._loop(self.interval, self._sync_once),
                name="todoist-auto-sync",
            )
            self._logger.info("Auto sync every %s seconds", self.interval)
        self._drain_task = asyncio.create_task(
            self._loop(self.drain_interval, self.engine.process_pending_changes),
            name="todoist-pending-drain",
        )

    async def stop(self) -> None:
        """Cancel both loops and wait for them to finish."""
        tasks = [t for t in (self._sync_task, self._drain_task) if t]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._sync_task = None
        self._drain_task = None

    async def _sync_once(self) -> None:
        outcome = await self.engine.perform_sync()
        if not outcome.success:
            self._logger.warning("Auto sync: %s", outcome.message)

    async def _loop(
        self, period: float, tick: Callable[[], Awaitable[object]]
    ) -> None:
        while True:
            await asyncio.sleep(period)
            try:
                await tick()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.error("Scheduled task failed: %s", exc)
