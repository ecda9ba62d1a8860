"""
flashsync exception hierarchy.

All domain-specific exceptions inherit from FlashSyncError, so a caller can
catch any pipeline error with a single base class while the orchestrator still
tells the stages apart.

Hierarchy::

    FlashSyncError
    ├── ConfigurationError        - settings loading, parsing, validation
    ├── UpstreamError             - feed could not be used this tick
    │   ├── UpstreamUnavailable   - every attempt on every egress path failed
    │   └── InvalidUpstreamResponse - malformed payload or an empty subset
    ├── StoreError                - durable store read failures
    │   └── StoreWriteFailure     - bulk insert-or-ignore failed
    ├── PublishFailure            - one record could not be queued
    └── LedgerIOFailure           - retry ledger unreadable / unwritable
"""

from __future__ import annotations


class FlashSyncError(Exception):
    """Base exception for all flashsync errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- Configuration -----------------------------------------------------------


class ConfigurationError(FlashSyncError):
    """Raised when configuration loading, parsing, or validation fails."""


# --- Upstream ----------------------------------------------------------------


class UpstreamError(FlashSyncError):
    """Raised when the upstream feed cannot be used for this tick."""


class UpstreamUnavailable(UpstreamError):
    """Raised when all fetch attempts on all egress paths are exhausted."""

    def __init__(self, message: str, *, attempts: int = 0, paths: int = 0) -> None:
        super().__init__(message, details={"attempts": attempts, "paths": paths})
        self.attempts = attempts
        self.paths = paths


class InvalidUpstreamResponse(UpstreamError):
    """Raised when the feed payload is malformed or one of its subsets is empty."""


# --- Store -------------------------------------------------------------------


class StoreError(FlashSyncError):
    """Raised when the durable store cannot be read."""


class StoreWriteFailure(StoreError):
    """Raised when a bulk write to the store fails."""

    def __init__(self, message: str, *, batch_size: int = 0, cause: Exception | None = None) -> None:
        super().__init__(message, details={"batch_size": batch_size})
        self.batch_size = batch_size
        if cause is not None:
            self.__cause__ = cause


# --- Delivery ----------------------------------------------------------------


class PublishFailure(FlashSyncError):
    """Raised when a single record cannot be pushed onto the delivery queue."""

    def __init__(self, record_id: int, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(f"Publish of record {record_id} failed: {message}", details={"record_id": record_id})
        self.record_id = record_id
        if cause is not None:
            self.__cause__ = cause


# --- Ledger ------------------------------------------------------------------


class LedgerIOFailure(FlashSyncError):
    """Raised when the retry ledger file cannot be read or written."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message, details={"path": path})
        self.path = path
