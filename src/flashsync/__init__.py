"""
flashsync - periodic upstream-to-queue synchronization.

Polls the flash feed, deduplicates against a durable store, persists new
records and forwards undelivered ones to a message queue, with a disk-backed
retry ledger so store or queue outages never lose work.
"""

__version__ = "0.1.0"

from flashsync.core.types import FeedSnapshot, FlashRecord, RetryLedgerEntry, SchedulerState, TickOutcome, TickResult

__all__ = [
    "__version__",
    "FlashRecord",
    "FeedSnapshot",
    "RetryLedgerEntry",
    "SchedulerState",
    "TickOutcome",
    "TickResult",
]
