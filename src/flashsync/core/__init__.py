"""
Core sync pipeline: types, filtering, scheduling policy, retry and orchestration.
"""

from flashsync.core.types import (
    FeedSnapshot,
    FlashRecord,
    RetryLedgerEntry,
    SchedulerState,
    TickOutcome,
    TickPhase,
    TickResult,
)

__all__ = [
    "FeedSnapshot",
    "FlashRecord",
    "RetryLedgerEntry",
    "SchedulerState",
    "TickOutcome",
    "TickPhase",
    "TickResult",
]
