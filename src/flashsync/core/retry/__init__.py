"""
Retry framework: backoff policy for upstream calls and the durable retry ledger.
"""

from flashsync.core.retry.ledger import RetryLedger
from flashsync.core.retry.manager import RetryManager
from flashsync.core.retry.policy import RetryPolicy

__all__ = [
    # Policy
    "RetryPolicy",
    # Manager
    "RetryManager",
    # Ledger
    "RetryLedger",
]
