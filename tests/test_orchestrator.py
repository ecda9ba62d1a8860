"""
End-to-end tick tests for SyncOrchestrator.

Each test wires the real store (in-memory DuckDB), a real ledger in tmp_path
and the in-memory queue adapter; only the upstream client is scripted.
"""

import asyncio
from unittest.mock import patch

import pytest
from helpers import QUEUE, FixedRandom, StubClient, make_record, offpeak_clock, snapshot

from flashsync.core.types import SchedulerState, TickOutcome, TickPhase
from flashsync.delivery.adapters import InMemoryAdapter
from flashsync.exceptions import (
    InvalidUpstreamResponse,
    LedgerIOFailure,
    StoreError,
    StoreWriteFailure,
    UpstreamUnavailable,
)


def alice_bob_snapshot(fingerprint="100"):
    """alice (allow-listed) and carol in the filtered subset, bob unfiltered."""
    return snapshot(
        filtered=[make_record(1, "alice"), make_record(3, "carol")],
        unfiltered=[make_record(2, "bob")],
        fingerprint=fingerprint,
    )


class TestFirstRun:
    @pytest.mark.asyncio
    async def test_publishes_unfiltered_and_allow_listed(self, build_orchestrator, store, ledger, adapter):
        orchestrator = build_orchestrator(StubClient(alice_bob_snapshot()), allow_list=["Alice"])

        result = await orchestrator.run_tick()

        assert result.outcome == TickOutcome.PROCESSED
        assert result.fingerprint == "100"
        assert result.candidates == 2
        assert result.written == 2
        assert result.published == 2
        assert result.failed == 0
        assert sorted(adapter.published_ids(QUEUE)) == [1, 2]
        assert [r.id for r in store.lookup_by_ids([1, 2, 3])] == [1, 2]
        assert ledger.drain_for_retry() == []
        assert orchestrator.state == SchedulerState("100", 0)
        assert orchestrator.phase == TickPhase.IDLE

    @pytest.mark.asyncio
    async def test_published_records_carry_fingerprint(self, build_orchestrator, adapter):
        orchestrator = build_orchestrator(StubClient(alice_bob_snapshot("42")))
        await orchestrator.run_tick()
        bodies = [m.body for m in adapter.get_queue_messages(QUEUE)]
        assert [b["feed_fingerprint"] for b in bodies] == ["42"]

    @pytest.mark.asyncio
    async def test_empty_allow_list_keeps_only_unfiltered(self, build_orchestrator, adapter):
        orchestrator = build_orchestrator(StubClient(alice_bob_snapshot()))
        result = await orchestrator.run_tick()
        assert result.candidates == 1
        assert adapter.published_ids(QUEUE) == [2]


class TestUnchangedFingerprint:
    @pytest.mark.asyncio
    async def test_backoff_roll_skips(self, build_orchestrator, adapter):
        # 0.05 < 0.1 (one unchanged tick * coefficient 0.1)
        orchestrator = build_orchestrator(StubClient(alice_bob_snapshot()), rng=FixedRandom(0.05))
        await orchestrator.run_tick()
        adapter.clear_queue(QUEUE)

        result = await orchestrator.run_tick()

        assert result.outcome == TickOutcome.SKIPPED_BACKOFF
        assert orchestrator.state == SchedulerState("100", 1)
        assert adapter.published_ids(QUEUE) == []

    @pytest.mark.asyncio
    async def test_counter_grows_across_skips(self, build_orchestrator):
        orchestrator = build_orchestrator(StubClient(alice_bob_snapshot()), rng=FixedRandom(0.0))
        for _ in range(4):
            await orchestrator.run_tick()
        assert orchestrator.state.consecutive_unchanged_ticks == 3

    @pytest.mark.asyncio
    async def test_processes_when_roll_does_not_skip(self, build_orchestrator, adapter):
        orchestrator = build_orchestrator(StubClient(alice_bob_snapshot()), rng=FixedRandom(0.99))
        await orchestrator.run_tick()
        adapter.clear_queue(QUEUE)

        result = await orchestrator.run_tick()

        # Stored without an artifact reference, so re-selected
        assert result.outcome == TickOutcome.PROCESSED
        assert result.written == 0
        assert adapter.published_ids(QUEUE) == [2]
        assert orchestrator.state == SchedulerState("100", 1)

    @pytest.mark.asyncio
    async def test_unchanged_skipped_when_reprocessing_disabled(self, build_orchestrator, adapter):
        orchestrator = build_orchestrator(StubClient(alice_bob_snapshot()), reprocess_unchanged=False)
        await orchestrator.run_tick()
        adapter.clear_queue(QUEUE)

        result = await orchestrator.run_tick()

        assert result.outcome == TickOutcome.SKIPPED_UNCHANGED
        assert adapter.published_ids(QUEUE) == []

    @pytest.mark.asyncio
    async def test_fingerprint_change_resets_counter(self, build_orchestrator):
        client = StubClient(alice_bob_snapshot("100"), alice_bob_snapshot("100"), alice_bob_snapshot("101"))
        orchestrator = build_orchestrator(client)
        await orchestrator.run_tick()
        await orchestrator.run_tick()
        assert orchestrator.state == SchedulerState("100", 1)

        await orchestrator.run_tick()
        assert orchestrator.state == SchedulerState("101", 0)


class TestStoreFailure:
    @pytest.mark.asyncio
    async def test_ledgers_all_candidates_and_skips_publishing(self, build_orchestrator, store, ledger, adapter):
        feed = snapshot([], [make_record(1), make_record(2), make_record(3)])
        orchestrator = build_orchestrator(StubClient(feed))

        failure = StoreWriteFailure("connection reset", batch_size=3)
        with patch.object(store, "write_many", side_effect=failure):
            result = await orchestrator.run_tick()

        assert result.outcome == TickOutcome.STORE_FAILED
        assert result.ledgered == 3
        assert adapter.publish_calls == 0

        entries = ledger.drain_for_retry()
        assert len(entries) == 1
        assert [r.id for r in entries[0].batch] == [1, 2, 3]
        assert "store-write-failure" in entries[0].reason
        # Fingerprint is committed even though processing failed
        assert orchestrator.state.last_fingerprint == "100"

    @pytest.mark.asyncio
    async def test_lookup_failure_is_ledgered(self, build_orchestrator, store, ledger, adapter):
        orchestrator = build_orchestrator(StubClient(snapshot([], [make_record(1)])))
        with patch.object(store, "lookup_by_ids", side_effect=StoreError("timeout")):
            result = await orchestrator.run_tick()

        assert result.outcome == TickOutcome.STORE_FAILED
        assert "store-lookup-failure" in ledger.drain_for_retry()[0].reason
        assert adapter.publish_calls == 0

    @pytest.mark.asyncio
    async def test_unreadable_allow_list_table_aborts_without_ledger(self, build_orchestrator, ledger, adapter):
        orchestrator = build_orchestrator(StubClient(alice_bob_snapshot()), allow_list_table="missing_users")

        result = await orchestrator.run_tick()

        assert result.outcome == TickOutcome.STORE_FAILED
        assert ledger.drain_for_retry() == []
        assert adapter.publish_calls == 0
        assert orchestrator.state == SchedulerState()


class TestPublishFailure:
    @pytest.mark.asyncio
    async def test_partial_failure_is_ledgered(self, build_orchestrator, store, ledger):
        queue = InMemoryAdapter(fail_ids={3})
        feed = snapshot([], [make_record(i) for i in range(1, 6)])
        orchestrator = build_orchestrator(StubClient(feed), queue_adapter=queue)

        result = await orchestrator.run_tick()

        assert result.outcome == TickOutcome.PROCESSED
        assert result.published == 4
        assert result.failed == 1
        assert result.ledgered == 1
        assert sorted(queue.published_ids(QUEUE)) == [1, 2, 4, 5]
        assert len(store.lookup_by_ids(range(1, 6))) == 5

        entries = ledger.drain_for_retry()
        assert len(entries) == 1
        assert [r.id for r in entries[0].batch] == [3]
        assert entries[0].reason.startswith("publish-failure")

    @pytest.mark.asyncio
    async def test_ledger_write_failure_is_reported(self, build_orchestrator, ledger):
        queue = InMemoryAdapter(fail_ids={1})
        orchestrator = build_orchestrator(StubClient(snapshot([], [make_record(1)])), queue_adapter=queue)

        with patch.object(ledger, "persist", side_effect=LedgerIOFailure("disk full")):
            result = await orchestrator.run_tick()

        assert result.failed == 1
        assert result.ledgered == 0
        assert any("disk full" in e for e in result.errors)


class TestSelfHealing:
    @pytest.mark.asyncio
    async def test_pending_record_is_reselected_until_artifact_ref_set(self, build_orchestrator, store, adapter):
        client = StubClient(
            snapshot([], [make_record(1), make_record(2)], "100"),
            snapshot([], [make_record(1), make_record(2)], "101"),
            snapshot([], [make_record(1), make_record(2)], "102"),
        )
        orchestrator = build_orchestrator(client)

        await orchestrator.run_tick()
        adapter.clear_queue(QUEUE)

        second = await orchestrator.run_tick()
        assert second.written == 0
        assert sorted(adapter.published_ids(QUEUE)) == [1, 2]

        assert store.set_artifact_ref(1, "bafy-artifact")
        adapter.clear_queue(QUEUE)
        await orchestrator.run_tick()
        assert adapter.published_ids(QUEUE) == [2]

    @pytest.mark.asyncio
    async def test_new_record_with_artifact_ref_is_published_once(self, build_orchestrator, adapter):
        client = StubClient(
            snapshot([make_record(1, "alice")], [make_record(2, "bob", artifact_ref="bafy")], "100"),
            snapshot([make_record(1, "alice")], [make_record(2, "bob", artifact_ref="bafy")], "101"),
        )
        orchestrator = build_orchestrator(client, allow_list=["alice"])

        result = await orchestrator.run_tick()

        assert result.written == 2
        assert result.eligible == 2
        assert result.published == 2
        assert sorted(adapter.published_ids(QUEUE)) == [1, 2]

        # Stored with its artifact, so it is not re-selected once known
        adapter.clear_queue(QUEUE)
        await orchestrator.run_tick()
        assert adapter.published_ids(QUEUE) == [1]


class TestLedgerReplay:
    @pytest.mark.asyncio
    async def test_successful_replay_clears_ledger(self, build_orchestrator, ledger, adapter):
        ledger.persist([make_record(7), make_record(8)], "publish-failure: 2 of 2 records")
        orchestrator = build_orchestrator(StubClient(snapshot([], [make_record(2)])))

        result = await orchestrator.run_tick()

        assert result.replayed == 2
        assert result.published == 3
        assert sorted(adapter.published_ids(QUEUE)) == [2, 7, 8]
        assert ledger.drain_for_retry() == []

    @pytest.mark.asyncio
    async def test_replay_dedupes_across_entries(self, build_orchestrator, ledger, adapter):
        ledger.persist([make_record(7)], "publish-failure")
        ledger.persist([make_record(7), make_record(8)], "store-write-failure")
        orchestrator = build_orchestrator(StubClient(snapshot([], [])))

        result = await orchestrator.run_tick()

        assert result.replayed == 2
        assert sorted(adapter.published_ids(QUEUE)) == [7, 8]

    @pytest.mark.asyncio
    async def test_replay_reledgers_only_what_still_fails(self, build_orchestrator, ledger):
        ledger.persist([make_record(7), make_record(8)], "publish-failure")
        queue = InMemoryAdapter(fail_ids={7})
        orchestrator = build_orchestrator(StubClient(snapshot([], [make_record(2)])), queue_adapter=queue)

        await orchestrator.run_tick()

        entries = ledger.drain_for_retry()
        assert len(entries) == 1
        assert [r.id for r in entries[0].batch] == [7]

    @pytest.mark.asyncio
    async def test_replay_store_failure_keeps_ledger(self, build_orchestrator, store, ledger):
        ledger.persist([make_record(7)], "publish-failure")
        orchestrator = build_orchestrator(StubClient(snapshot([], [])))

        with patch.object(store, "write_many", side_effect=StoreWriteFailure("down", batch_size=1)):
            result = await orchestrator.run_tick()

        entries = ledger.drain_for_retry()
        assert [[r.id for r in e.batch] for e in entries] == [[7]]
        assert any("ledger replay" in e for e in result.errors)

    @pytest.mark.asyncio
    async def test_replay_runs_even_when_tick_is_skipped_off_peak(self, build_orchestrator, ledger, adapter):
        ledger.persist([make_record(7)], "publish-failure")
        client = StubClient(snapshot([], [make_record(2)]))
        orchestrator = build_orchestrator(client, clock=offpeak_clock, rng=FixedRandom(0.1))

        result = await orchestrator.run_tick()

        assert result.outcome == TickOutcome.SKIPPED_OFF_PEAK
        assert adapter.published_ids(QUEUE) == [7]
        assert client.calls == 0

    @pytest.mark.asyncio
    async def test_unreadable_ledger_aborts_tick(self, build_orchestrator, ledger):
        ledger.path.mkdir(parents=True)
        client = StubClient(snapshot([], [make_record(2)]))

        result = await build_orchestrator(client).run_tick()

        assert result.outcome == TickOutcome.LEDGER_FAILED
        assert client.calls == 0


class TestUpstreamFailure:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [UpstreamUnavailable("all paths failed", attempts=6, paths=2), InvalidUpstreamResponse("not a list")],
    )
    async def test_aborts_without_ledger(self, build_orchestrator, ledger, adapter, error):
        orchestrator = build_orchestrator(StubClient(error))

        result = await orchestrator.run_tick()

        assert result.outcome == TickOutcome.UPSTREAM_FAILED
        assert result.errors
        assert ledger.drain_for_retry() == []
        assert adapter.publish_calls == 0
        assert orchestrator.state == SchedulerState()


class TestSkips:
    @pytest.mark.asyncio
    async def test_off_peak_skip_does_not_fetch(self, build_orchestrator):
        client = StubClient(alice_bob_snapshot())
        orchestrator = build_orchestrator(client, clock=offpeak_clock, rng=FixedRandom(0.1))

        result = await orchestrator.run_tick()

        assert result.outcome == TickOutcome.SKIPPED_OFF_PEAK
        assert client.calls == 0
        assert orchestrator.state == SchedulerState()

    @pytest.mark.asyncio
    async def test_off_peak_roll_can_let_tick_through(self, build_orchestrator):
        orchestrator = build_orchestrator(StubClient(alice_bob_snapshot()), clock=offpeak_clock, rng=FixedRandom(0.9))
        result = await orchestrator.run_tick()
        assert result.outcome == TickOutcome.PROCESSED

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, build_orchestrator):
        release = asyncio.Event()

        class SlowClient(StubClient):
            async def fetch(self):
                await release.wait()
                return await super().fetch()

        orchestrator = build_orchestrator(SlowClient(alice_bob_snapshot()))
        first = asyncio.create_task(orchestrator.run_tick())
        while orchestrator.phase != TickPhase.FETCHING:
            await asyncio.sleep(0)

        assert orchestrator.busy
        second = await orchestrator.run_tick()
        assert second.outcome == TickOutcome.SKIPPED_BUSY

        release.set()
        assert (await first).outcome == TickOutcome.PROCESSED
        assert not orchestrator.busy


class TestStateIsolation:
    @pytest.mark.asyncio
    async def test_instances_do_not_share_state(self, build_orchestrator):
        first = build_orchestrator(StubClient(alice_bob_snapshot("100")))
        second = build_orchestrator(StubClient(alice_bob_snapshot("200")))

        await first.run_tick()
        await first.run_tick()

        assert first.state == SchedulerState("100", 1)
        assert second.state == SchedulerState()


class TestAllowListTable:
    @pytest.mark.asyncio
    async def test_actors_from_store_table_are_accepted(self, build_orchestrator, store, adapter):
        store.connection.execute('CREATE TABLE "users" ("username" VARCHAR)')
        store.connection.execute("INSERT INTO \"users\" VALUES ('CAROL')")
        orchestrator = build_orchestrator(
            StubClient(alice_bob_snapshot()), allow_list=["alice"], allow_list_table="users"
        )

        result = await orchestrator.run_tick()

        assert result.candidates == 3
        assert sorted(adapter.published_ids(QUEUE)) == [1, 2, 3]
