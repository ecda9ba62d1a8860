"""
Type definitions for flashsync.

Records observed upstream, ledger entries, scheduler state and tick results.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any

# Upstream feed field names accepted in addition to the record's own names.
_FEED_ALIASES: dict[str, str] = {
    "flash_id": "id",
    "player": "actor",
    "city": "location",
    "img": "image_ref",
    "image_url": "image_ref",
    "ipfs_cid": "artifact_ref",
    "timestamp": "observed_at",
    "flash_count": "feed_fingerprint",
}


@dataclass(frozen=True)
class FlashRecord:
    """
    One observed event from upstream.

    ``id`` is the identity key for deduplication and conflict resolution.
    A record whose ``artifact_ref`` is empty is pending delivery.
    """

    id: int
    actor: str
    location: str = ""
    image_ref: str = ""
    artifact_ref: str | None = None
    text: str | None = None
    observed_at: int = 0
    feed_fingerprint: str = ""

    @property
    def pending_delivery(self) -> bool:
        """True until a downstream artifact reference has been recorded."""
        return not (self.artifact_ref and self.artifact_ref.strip())

    def with_fingerprint(self, fingerprint: str) -> FlashRecord:
        return replace(self, feed_fingerprint=fingerprint)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a self-describing dict (field names preserved)."""
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlashRecord:
        """
        Create from a dictionary.

        Accepts both the record's own field names and the upstream feed names
        (``flash_id``, ``player``, ``city``, ``img``, ``ipfs_cid``, ``timestamp``).

        Raises:
            ValueError: If ``id`` or ``actor`` is missing or ``id`` is not an integer
        """
        normalized: dict[str, Any] = {}
        for key, value in data.items():
            target = _FEED_ALIASES.get(key, key)
            # Own field names win over aliases when both are present
            if target in normalized and key != target:
                continue
            normalized[target] = value

        if normalized.get("id") is None:
            raise ValueError(f"record has no id: {data!r}")
        if normalized.get("actor") is None:
            raise ValueError(f"record {normalized['id']} has no actor")

        try:
            record_id = int(normalized["id"])
        except (TypeError, ValueError) as e:
            raise ValueError(f"record id is not an integer: {normalized['id']!r}") from e

        artifact_ref = normalized.get("artifact_ref")
        text = normalized.get("text")
        return cls(
            id=record_id,
            actor=str(normalized["actor"]),
            location=str(normalized.get("location") or ""),
            image_ref=str(normalized.get("image_ref") or ""),
            artifact_ref=str(artifact_ref) if artifact_ref not in (None, "") else None,
            text=str(text) if text is not None else None,
            observed_at=int(normalized.get("observed_at") or 0),
            feed_fingerprint=str(normalized.get("feed_fingerprint") or ""),
        )


@dataclass(frozen=True)
class FeedSnapshot:
    """
    One poll of the upstream feed.

    ``filtered`` is the subset that must pass the allow-list, ``unfiltered``
    is processed unconditionally. ``fingerprint`` is the cheap change token.
    """

    filtered: list[FlashRecord]
    unfiltered: list[FlashRecord]
    fingerprint: str

    @property
    def total(self) -> int:
        return len(self.filtered) + len(self.unfiltered)


@dataclass
class RetryLedgerEntry:
    """
    A failed unit of work awaiting replay.

    Stores the batch, the stage/reason tag, and when it was recorded.
    """

    batch: list[FlashRecord]
    reason: str
    recorded_at: float | None = None
    entry_id: str | None = None

    def __post_init__(self) -> None:
        """Set default values."""
        if self.recorded_at is None:
            self.recorded_at = time.time()

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "reason": self.reason,
            "recorded_at": self.recorded_at,
            "batch": [record.to_dict() for record in self.batch],
        }

    def to_json(self) -> str:
        """Convert to a single-line JSON string."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryLedgerEntry:
        return cls(
            batch=[FlashRecord.from_dict(item) for item in data.get("batch") or []],
            reason=str(data.get("reason", "")),
            recorded_at=data.get("recorded_at"),
            entry_id=data.get("entry_id"),
        )

    @classmethod
    def from_json(cls, json_str: str) -> RetryLedgerEntry:
        return cls.from_dict(json.loads(json_str))


@dataclass(frozen=True)
class SchedulerState:
    """
    Change-detection state owned by one orchestrator.

    Values are replaced between ticks, never mutated in place.
    """

    last_fingerprint: str | None = None
    consecutive_unchanged_ticks: int = 0


class TickPhase(str, Enum):
    """Where the orchestrator currently is within a tick."""

    IDLE = "idle"
    RETRYING_LEDGER = "retrying_ledger"
    FETCHING = "fetching"
    COMPARING = "comparing"
    PROCESSING = "processing"


class TickOutcome(str, Enum):
    """How a tick ended."""

    PROCESSED = "processed"
    SKIPPED_OFF_PEAK = "skipped_off_peak"
    SKIPPED_BACKOFF = "skipped_backoff"
    SKIPPED_UNCHANGED = "skipped_unchanged"
    SKIPPED_BUSY = "skipped_busy"
    UPSTREAM_FAILED = "upstream_failed"
    STORE_FAILED = "store_failed"
    LEDGER_FAILED = "ledger_failed"


@dataclass
class TickResult:
    """Summary of one orchestrator tick, logged at completion."""

    outcome: TickOutcome
    fingerprint: str | None = None
    replayed: int = 0
    candidates: int = 0
    written: int = 0
    eligible: int = 0
    published: int = 0
    failed: int = 0
    ledgered: int = 0
    duration_s: float = 0.0
    errors: list[str] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"outcome={self.outcome.value} fingerprint={self.fingerprint} replayed={self.replayed} "
            f"candidates={self.candidates} written={self.written} eligible={self.eligible} "
            f"published={self.published} failed={self.failed} ledgered={self.ledgered} "
            f"duration={self.duration_s:.2f}s"
        )
