"""
Test helpers: record factory, clocks and scripted fakes.
"""

from datetime import UTC, datetime

from flashsync.core.types import FeedSnapshot, FlashRecord

QUEUE = "flashes"


def make_record(record_id: int, actor: str = "bob", **kwargs) -> FlashRecord:
    kwargs.setdefault("location", "Paris")
    kwargs.setdefault("image_ref", f"https://img.example/{record_id}.jpg")
    kwargs.setdefault("observed_at", 1_700_000_000 + record_id)
    return FlashRecord(id=record_id, actor=actor, **kwargs)


def snapshot(filtered, unfiltered, fingerprint="100") -> FeedSnapshot:
    return FeedSnapshot(filtered=list(filtered), unfiltered=list(unfiltered), fingerprint=fingerprint)


def peak_clock() -> datetime:
    """Noon UTC, inside the default peak window."""
    return datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def offpeak_clock() -> datetime:
    """02:00 UTC (03:00 local), outside the default peak window."""
    return datetime(2024, 6, 1, 2, 0, tzinfo=UTC)


class StubClient:
    """Returns queued snapshots (or raises queued exceptions) from fetch(); the last one repeats."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def fetch(self) -> FeedSnapshot:
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return result


class FixedRandom:
    """random.Random stand-in returning scripted values; the last one repeats."""

    def __init__(self, *values: float):
        self.values = list(values)
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        return self.values.pop(0) if len(self.values) > 1 else self.values[0]
