"""
Schedulable tasks.

A task is anything with a ``name`` and an async ``run_once``; the scheduler
holds a collection of them and never needs to know what they do.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from flashsync.core.orchestrator import SyncOrchestrator
from flashsync.core.types import TickResult


@runtime_checkable
class Task(Protocol):
    """Capability: run one tick of a periodic job."""

    name: str

    async def run_once(self) -> Any: ...


class SyncTask:
    """Runs one orchestrator tick per invocation."""

    def __init__(self, orchestrator: SyncOrchestrator, name: str = "sync-flashes"):
        self.orchestrator = orchestrator
        self.name = name

    async def run_once(self) -> TickResult:
        return await self.orchestrator.run_tick()

    def __repr__(self) -> str:
        return f"SyncTask(name='{self.name}')"
