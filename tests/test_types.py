"""
Tests for flashsync data types.
"""

import dataclasses
import json

import pytest

from flashsync.core.types import FlashRecord, RetryLedgerEntry, SchedulerState, TickOutcome, TickResult


class TestFlashRecord:
    """Tests for FlashRecord."""

    def test_from_dict_accepts_feed_field_names(self):
        """Upstream names map onto record fields."""
        record = FlashRecord.from_dict(
            {
                "flash_id": "42",
                "player": "Alice",
                "city": "Paris",
                "img": "https://img/42.jpg",
                "ipfs_cid": "",
                "text": None,
                "timestamp": 1700000000,
            }
        )
        assert record.id == 42
        assert record.actor == "Alice"
        assert record.location == "Paris"
        assert record.image_ref == "https://img/42.jpg"
        assert record.artifact_ref is None
        assert record.observed_at == 1700000000
        assert record.pending_delivery is True

    def test_own_field_names_win_over_aliases(self):
        """When both spellings are present the record's own name is used."""
        record = FlashRecord.from_dict({"flash_id": 2, "id": 1, "actor": "a"})
        assert record.id == 1

    def test_missing_id_raises(self):
        with pytest.raises(ValueError, match="no id"):
            FlashRecord.from_dict({"actor": "a"})

    def test_missing_actor_raises(self):
        with pytest.raises(ValueError, match="no actor"):
            FlashRecord.from_dict({"id": 1})

    def test_non_integer_id_raises(self):
        with pytest.raises(ValueError, match="not an integer"):
            FlashRecord.from_dict({"id": "abc", "actor": "a"})

    def test_pending_delivery_ignores_blank_artifact(self):
        """Whitespace-only artifact references still count as pending."""
        assert FlashRecord(id=1, actor="a", artifact_ref="  ").pending_delivery is True
        assert FlashRecord(id=1, actor="a", artifact_ref="bafy123").pending_delivery is False

    def test_to_dict_preserves_field_names(self):
        """Serialized body is self-describing."""
        record = FlashRecord(id=7, actor="bob", feed_fingerprint="100")
        body = json.loads(record.to_json())
        assert body["id"] == 7
        assert body["actor"] == "bob"
        assert body["feed_fingerprint"] == "100"
        assert set(body) == {f.name for f in dataclasses.fields(FlashRecord)}

    def test_with_fingerprint_returns_copy(self):
        record = FlashRecord(id=1, actor="a")
        stamped = record.with_fingerprint("200")
        assert stamped.feed_fingerprint == "200"
        assert record.feed_fingerprint == ""


class TestRetryLedgerEntry:
    """Tests for RetryLedgerEntry serialization."""

    def test_json_round_trip(self):
        batch = [FlashRecord(id=1, actor="a", text="hi"), FlashRecord(id=2, actor="b", artifact_ref="cid")]
        entry = RetryLedgerEntry(batch=batch, reason="publish-failure", entry_id="led_x")
        restored = RetryLedgerEntry.from_json(entry.to_json())
        assert restored.batch == batch
        assert restored.reason == "publish-failure"
        assert restored.recorded_at == entry.recorded_at
        assert restored.entry_id == "led_x"

    def test_json_is_single_line(self):
        entry = RetryLedgerEntry(batch=[FlashRecord(id=1, actor="a", text="line1\nline2")], reason="r")
        assert "\n" not in entry.to_json()

    def test_recorded_at_defaults_to_now(self):
        entry = RetryLedgerEntry(batch=[], reason="r")
        assert entry.recorded_at is not None and entry.recorded_at > 0


class TestSchedulerState:
    """Tests for SchedulerState."""

    def test_defaults(self):
        state = SchedulerState()
        assert state.last_fingerprint is None
        assert state.consecutive_unchanged_ticks == 0

    def test_is_immutable(self):
        state = SchedulerState("100", 1)
        with pytest.raises(dataclasses.FrozenInstanceError):
            state.consecutive_unchanged_ticks = 2  # type: ignore[misc]


class TestTickResult:
    def test_summary_lists_outcome_and_counts(self):
        result = TickResult(outcome=TickOutcome.PROCESSED, fingerprint="100", published=2)
        summary = result.summary()
        assert "outcome=processed" in summary
        assert "published=2" in summary
