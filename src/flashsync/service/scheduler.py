"""
Task scheduler.

A single loop owns the timer: each registered task fires on a fixed interval
(``every_s``) or a cron expression. Tasks run one at a time and each run is
awaited to completion, so no task ever overlaps itself. ``request_stop`` (wired
to SIGINT/SIGTERM by ``install_signal_handlers``) lets the running task finish
and then ends the loop.
"""

from __future__ import annotations

import asyncio
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from flashsync.service.cron import CronParseError, next_fire_time, parse_cron
from flashsync.service.tasks import Task
from flashsync.utils.logging import get_logger

logger = get_logger("flashsync.service.scheduler")

# Delay before retrying a task whose run raised
ERROR_BACKOFF_S = 30.0


@dataclass
class ScheduledTask:
    task: Task
    every_s: float | None = None
    cron: str | None = None
    timezone: str | None = None
    next_run_at: float = 0.0
    last_run_at: float | None = None
    runs: int = 0
    failures: int = 0

    def schedule_next(self, now: float) -> None:
        if self.cron:
            try:
                when = datetime.fromtimestamp(now, tz=UTC)
                self.next_run_at = next_fire_time(self.cron, now=when, timezone=self.timezone).timestamp()
                return
            except CronParseError as e:
                logger.error(f"Task '{self.task.name}': {e}; retrying schedule in 60s")
                self.next_run_at = now + 60.0
                return
        self.next_run_at = now + max(1.0, float(self.every_s or 300.0))


class Scheduler:
    """
    Runs a collection of tasks on their schedules until stopped.

    Example:
        ```python
        scheduler = Scheduler()
        scheduler.add(SyncTask(orchestrator), every_s=300)
        scheduler.install_signal_handlers()
        await scheduler.run()
        ```
    """

    def __init__(
        self,
        *,
        stop_event: asyncio.Event | None = None,
        clock: Callable[[], float] = time.time,
        max_wait_s: float = 1.0,
    ):
        """
        Initialize scheduler.

        Args:
            stop_event: Event that ends the loop when set (shared with publishers)
            clock: Wall-clock source in unix seconds
            max_wait_s: Longest idle wait between due-checks
        """
        self.stop_event = stop_event or asyncio.Event()
        self.clock = clock
        self.max_wait_s = max_wait_s
        self.entries: list[ScheduledTask] = []

    def add(
        self,
        task: Task,
        *,
        every_s: float | None = None,
        cron: str | None = None,
        timezone: str | None = None,
        run_immediately: bool = True,
    ) -> ScheduledTask:
        """
        Register a task.

        Raises:
            CronParseError: If ``cron`` is given and invalid
            ValueError: If neither or both of ``every_s`` and ``cron`` are given
        """
        if (every_s is None) == (cron is None):
            raise ValueError(f"Task '{task.name}' needs exactly one of every_s or cron")
        if cron is not None:
            parse_cron(cron)

        entry = ScheduledTask(task=task, every_s=every_s, cron=cron, timezone=timezone)
        if not run_immediately:
            entry.schedule_next(self.clock())
        self.entries.append(entry)
        logger.info(f"Scheduled task '{task.name}' ({f'cron {cron!r}' if cron else f'every {every_s}s'})")
        return entry

    def request_stop(self) -> None:
        if not self.stop_event.is_set():
            logger.info("Shutdown requested; finishing the current task before exit")
        self.stop_event.set()

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Route SIGINT/SIGTERM to request_stop (no-op where unsupported)."""
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {sig.name} not supported on this platform")

    async def run(self) -> None:
        """Run due tasks until the stop event is set."""
        if not self.entries:
            logger.warning("Scheduler started with no tasks")
            return

        logger.info(f"Scheduler running {len(self.entries)} task(s)")
        while not self.stop_event.is_set():
            for entry in self.entries:
                if self.stop_event.is_set():
                    break
                now = self.clock()
                if now < entry.next_run_at:
                    continue
                await self._run_entry(entry, now)

            now = self.clock()
            wait = min(entry.next_run_at for entry in self.entries) - now
            await self._wait(min(max(wait, 0.0), self.max_wait_s))

        logger.info("Scheduler stopped")

    async def _run_entry(self, entry: ScheduledTask, now: float) -> None:
        name = entry.task.name
        try:
            result = await entry.task.run_once()
        except Exception as e:
            entry.failures += 1
            logger.error(f"Task '{name}' failed: {e}", exc_info=True)
            entry.next_run_at = now + ERROR_BACKOFF_S
            return
        finally:
            entry.runs += 1
            entry.last_run_at = now

        entry.schedule_next(self.clock())
        logger.debug(f"Task '{name}' finished ({result!r}); next run at {entry.next_run_at:.0f}")

    async def _wait(self, timeout: float) -> None:
        if timeout <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    def status(self) -> list[dict[str, Any]]:
        """Per-task schedule and run counts."""
        return [
            {
                "task": entry.task.name,
                "every_s": entry.every_s,
                "cron": entry.cron,
                "next_run_at": entry.next_run_at,
                "last_run_at": entry.last_run_at,
                "runs": entry.runs,
                "failures": entry.failures,
            }
            for entry in self.entries
        ]
