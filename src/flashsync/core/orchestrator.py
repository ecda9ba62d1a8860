"""
Sync orchestrator.

One tick walks ``Idle -> RetryingLedger -> Fetching -> Comparing`` and then
either skips (off-peak, backoff, unchanged) or processes the snapshot through
merge -> dedup -> store write -> publish. Stage failures are converted into
an abort-with-ledger or abort-without-ledger decision here:

========================  ===========================================
UpstreamUnavailable       abort, no ledger entry
InvalidUpstreamResponse   abort, no ledger entry
StoreWriteFailure         ledger every candidate, skip publishing
PublishFailure            ledger the failed records as one entry
LedgerIOFailure           abort the tick, log at critical
========================  ===========================================

Ticks never overlap: a tick requested while one is running returns
``SKIPPED_BUSY`` immediately.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from flashsync.core.filtering import dedupe_by_id, merge_candidates, normalize_allow_list, select_publish_eligible
from flashsync.core.retry.ledger import RetryLedger
from flashsync.core.scheduling import SchedulePolicy, advance_state, roll
from flashsync.core.types import (
    FeedSnapshot,
    FlashRecord,
    SchedulerState,
    TickOutcome,
    TickPhase,
    TickResult,
)
from flashsync.delivery.publisher import DeliveryPublisher
from flashsync.exceptions import LedgerIOFailure, StoreError, StoreWriteFailure, UpstreamError
from flashsync.store.flashes import FlashStore
from flashsync.upstream.client import UpstreamClient
from flashsync.utils.logging import get_logger

logger = get_logger("flashsync.orchestrator")

STORE_WRITE_FAILURE = "store-write-failure"
STORE_LOOKUP_FAILURE = "store-lookup-failure"


@dataclass
class _PipelineRun:
    """Counts and failures from one pass of the dedup/store/publish pipeline."""

    stored: bool = False
    candidates: int = 0
    written: int = 0
    eligible: int = 0
    published: int = 0
    publish_failed: list[FlashRecord] = field(default_factory=list)
    failure_reason: str | None = None


class SyncOrchestrator:
    """
    Runs sync ticks and owns the change-detection state.

    Each instance carries its own SchedulerState, so several orchestrators
    (for example one per test) never share counters.

    Example:
        ```python
        orchestrator = SyncOrchestrator(
            client=client, store=store, publisher=publisher, ledger=ledger,
            policy=SchedulePolicy(), allow_list=["alice"],
        )
        result = await orchestrator.run_tick()
        ```
    """

    def __init__(
        self,
        *,
        client: UpstreamClient,
        store: FlashStore,
        publisher: DeliveryPublisher,
        ledger: RetryLedger,
        policy: SchedulePolicy | None = None,
        allow_list: Iterable[str] = (),
        allow_list_table: str | None = None,
        allow_list_column: str = "username",
        reprocess_unchanged: bool = True,
        state: SchedulerState | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize orchestrator.

        Args:
            client: Upstream feed client
            store: Durable flash store
            publisher: Delivery publisher
            ledger: Retry ledger
            policy: Off-peak and backoff policy (default: SchedulePolicy())
            allow_list: Actors whose records from the filtered subset are accepted
            allow_list_table: Store table with additional allowed actors, read every tick
            allow_list_column: Column of ``allow_list_table`` holding actor names
            reprocess_unchanged: Process a snapshot whose fingerprint is unchanged
                when the backoff roll does not skip; otherwise skip it
            state: Initial scheduler state
            rng: Randomness source for skip decisions
            clock: Returns the current time (timezone-aware)
        """
        self.client = client
        self.store = store
        self.publisher = publisher
        self.ledger = ledger
        self.policy = policy or SchedulePolicy()
        self.allow_list = normalize_allow_list(allow_list)
        self.allow_list_table = allow_list_table
        self.allow_list_column = allow_list_column
        self.reprocess_unchanged = reprocess_unchanged
        self.rng = rng or random.Random()
        self.clock = clock or (lambda: datetime.now(UTC))

        self._state = state or SchedulerState()
        self._phase = TickPhase.IDLE
        self._tick_lock = asyncio.Lock()

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def phase(self) -> TickPhase:
        return self._phase

    @property
    def busy(self) -> bool:
        return self._tick_lock.locked()

    async def run_tick(self) -> TickResult:
        """
        Run one tick.

        Returns:
            TickResult with the outcome and counts. Replayed ledger records are
            included in the written/eligible/published/failed counts.
        """
        if self._tick_lock.locked():
            logger.warning("Tick requested while another tick is running; skipping")
            return TickResult(outcome=TickOutcome.SKIPPED_BUSY, fingerprint=self._state.last_fingerprint)

        async with self._tick_lock:
            started = time.monotonic()
            result = TickResult(outcome=TickOutcome.PROCESSED)
            try:
                await self._tick(result)
            finally:
                self._phase = TickPhase.IDLE
                result.duration_s = time.monotonic() - started

        log = logger.warning if result.errors else logger.info
        log(f"Tick complete: {result.summary()}")
        return result

    async def _tick(self, result: TickResult) -> None:
        self._phase = TickPhase.RETRYING_LEDGER
        if not await self._replay_ledger(result):
            return

        now = self.clock()
        if roll(self.policy.offpeak_skip_chance(now), self.rng):
            logger.info(f"Off-peak skip (local hour {self.policy.local_hour(now)})")
            result.outcome = TickOutcome.SKIPPED_OFF_PEAK
            return

        self._phase = TickPhase.FETCHING
        try:
            snapshot = await self.client.fetch()
        except UpstreamError as e:
            logger.error(f"Upstream fetch failed, tick aborted: {e}")
            result.outcome = TickOutcome.UPSTREAM_FAILED
            result.errors.append(str(e))
            return

        self._phase = TickPhase.COMPARING
        result.fingerprint = snapshot.fingerprint
        next_state, changed = advance_state(self._state, snapshot.fingerprint)

        if not changed:
            self._state = next_state
            unchanged = next_state.consecutive_unchanged_ticks
            if roll(self.policy.backoff_skip_chance(unchanged), self.rng):
                logger.info(f"Backoff skip ({unchanged} consecutive unchanged, fingerprint {snapshot.fingerprint})")
                result.outcome = TickOutcome.SKIPPED_BACKOFF
                return
            if not self.reprocess_unchanged:
                logger.info(f"No change detected ({unchanged} consecutive, fingerprint {snapshot.fingerprint})")
                result.outcome = TickOutcome.SKIPPED_UNCHANGED
                return
        else:
            logger.info(
                f"Fingerprint changed: {self._state.last_fingerprint} -> {snapshot.fingerprint} "
                f"(after {self._state.consecutive_unchanged_ticks} unchanged)"
            )

        self._phase = TickPhase.PROCESSING
        processed = await self._process_snapshot(snapshot, result)

        # Committed only once the processing branch has returned
        if changed and processed:
            self._state = next_state

    async def _replay_ledger(self, result: TickResult) -> bool:
        """Replay ledgered batches; False when the ledger itself failed."""
        try:
            entries = await asyncio.to_thread(self.ledger.drain_for_retry)
        except LedgerIOFailure as e:
            logger.critical(f"Retry ledger unreadable, tick aborted: {e}")
            result.outcome = TickOutcome.LEDGER_FAILED
            result.errors.append(str(e))
            return False

        if not entries:
            return True

        batch = dedupe_by_id(record for entry in entries for record in entry.batch)
        result.replayed = len(batch)
        logger.info(f"Replaying {len(batch)} records from {len(entries)} ledger entries")

        run = await self._run_pipeline(batch, context="ledger-replay")
        self._add_counts(result, run, include_candidates=False)

        if run.stored and (run.published > 0 or run.eligible == 0):
            try:
                await asyncio.to_thread(self.ledger.clear)
            except LedgerIOFailure as e:
                logger.critical(f"Cannot clear retry ledger after replay: {e}")
                result.errors.append(str(e))
                return True
            await self._persist(run.publish_failed, run.failure_reason, result)
        else:
            reason = run.failure_reason or "nothing delivered"
            logger.warning(f"Ledger replay unsuccessful ({reason}); keeping {len(entries)} entries")
            result.errors.append(f"ledger replay: {reason}")
        return True

    async def _process_snapshot(self, snapshot: FeedSnapshot, result: TickResult) -> bool:
        """Run the snapshot through the pipeline; False when it never reached the pipeline."""
        try:
            allow_list = await self._resolve_allow_list()
        except StoreError as e:
            logger.error(f"Cannot load allow-list, tick aborted: {e}")
            result.outcome = TickOutcome.STORE_FAILED
            result.errors.append(str(e))
            return False

        candidates = merge_candidates(snapshot, allow_list)
        logger.info(
            f"{len(candidates)} candidates from {snapshot.total} records "
            f"({len(snapshot.unfiltered)} unfiltered, {len(candidates) - len(snapshot.unfiltered)} allow-listed)"
        )
        run = await self._run_pipeline(candidates, context="tick")
        self._add_counts(result, run, include_candidates=True)

        if not run.stored:
            result.outcome = TickOutcome.STORE_FAILED
            result.errors.append(run.failure_reason or STORE_WRITE_FAILURE)
            await self._persist(candidates, run.failure_reason, result)
            return True

        await self._persist(run.publish_failed, run.failure_reason, result)
        return True

    async def _run_pipeline(self, candidates: Sequence[FlashRecord], *, context: str) -> _PipelineRun:
        """Dedup against the store, write new records, publish the eligible set."""
        run = _PipelineRun(candidates=len(candidates))
        if not candidates:
            run.stored = True
            return run

        try:
            existing = await asyncio.to_thread(self.store.lookup_by_ids, [c.id for c in candidates])
        except StoreError as e:
            logger.error(f"[{context}] Store lookup failed for {len(candidates)} candidates: {e}")
            run.failure_reason = f"{STORE_LOOKUP_FAILURE}: {e}"
            return run

        selection = select_publish_eligible(candidates, existing)
        try:
            written = await asyncio.to_thread(self.store.write_many, selection.new)
        except StoreWriteFailure as e:
            logger.error(f"[{context}] Store write failed for {len(candidates)} candidates, not publishing: {e}")
            run.failure_reason = f"{STORE_WRITE_FAILURE}: {e}"
            return run

        run.stored = True
        run.written = len(written)
        run.eligible = len(selection.eligible)
        logger.info(
            f"[{context}] {len(selection.new)} new ({run.written} written), {len(selection.known)} known, "
            f"{run.eligible} eligible for publishing"
        )

        report = await self.publisher.publish_all(selection.eligible)
        run.published = len(report.published)
        run.publish_failed = report.failed
        if report.failed:
            run.failure_reason = report.failure_reason()
        return run

    async def _resolve_allow_list(self) -> frozenset[str]:
        if not self.allow_list_table:
            return self.allow_list
        stored = await asyncio.to_thread(self.store.load_allow_list, self.allow_list_table, self.allow_list_column)
        return self.allow_list | normalize_allow_list(stored)

    async def _persist(self, records: Sequence[FlashRecord], reason: str | None, result: TickResult) -> None:
        if not records:
            return
        try:
            entry = await asyncio.to_thread(self.ledger.persist, records, reason or "unknown-failure")
        except LedgerIOFailure as e:
            logger.critical(f"Cannot ledger {len(records)} failed records, they may be lost: {e}")
            result.errors.append(str(e))
            return
        if entry is not None:
            result.ledgered += len(entry.batch)

    @staticmethod
    def _add_counts(result: TickResult, run: _PipelineRun, *, include_candidates: bool) -> None:
        if include_candidates:
            result.candidates += run.candidates
        result.written += run.written
        result.eligible += run.eligible
        result.published += run.published
        result.failed += len(run.publish_failed)
