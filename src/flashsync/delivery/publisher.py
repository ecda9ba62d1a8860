"""
Delivery publisher.

Pushes publish-eligible records onto the delivery queue in fixed-size
batches. Each batch runs under a semaphore with a fixed concurrency ceiling
and is awaited to completion before the next one starts; a short pause
separates batches. Per-record failures are isolated and collected.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from flashsync.core.types import FlashRecord
from flashsync.delivery.adapters.base import Message, QueueAdapter
from flashsync.exceptions import PublishFailure
from flashsync.utils.logging import get_logger

logger = get_logger("flashsync.delivery.publisher")


@dataclass
class PublishReport:
    """Outcome of one publish_all call."""

    published: list[FlashRecord] = field(default_factory=list)
    failed: list[FlashRecord] = field(default_factory=list)
    errors: list[PublishFailure] = field(default_factory=list)
    batches: int = 0
    last_published_at: float | None = None

    @property
    def attempted(self) -> int:
        return len(self.published) + len(self.failed)

    def failure_reason(self) -> str:
        """Reason tag for ledgering the failed records."""
        first = str(self.errors[0]) if self.errors else "not attempted"
        return f"publish-failure: {len(self.failed)} of {self.attempted} records; first error: {first}"


class DeliveryPublisher:
    """
    Bounded-concurrency batch publisher.

    Example:
        >>> publisher = DeliveryPublisher(adapter, "flashes", batch_size=50, concurrency=5)
        >>> report = await publisher.publish_all(records)
        >>> ledger.persist(report.failed, report.failure_reason())
    """

    def __init__(
        self,
        adapter: QueueAdapter,
        queue: str,
        *,
        batch_size: int = 50,
        concurrency: int = 5,
        batch_pause_s: float = 0.1,
        publish_timeout_s: float = 10.0,
        stop_event: asyncio.Event | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        """
        Initialize publisher.

        Args:
            adapter: Connected queue adapter
            queue: Target queue name
            batch_size: Records per batch
            concurrency: Maximum publish calls in flight
            batch_pause_s: Pause between batches
            publish_timeout_s: Timeout for a single publish call
            stop_event: When set, no further batches are started
            sleep: Awaitable sleep used for the pause (default: asyncio.sleep)
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        self.adapter = adapter
        self.queue = queue
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.batch_pause_s = batch_pause_s
        self.publish_timeout_s = publish_timeout_s
        self.stop_event = stop_event
        self._sleep = sleep or asyncio.sleep

        self.total_published = 0
        self.total_failed = 0
        self.last_published_at: float | None = None

    async def publish_all(self, records: Sequence[FlashRecord]) -> PublishReport:
        """
        Publish every record, isolating per-record failures.

        Records left unattempted because the stop event was set are reported
        as failed so the caller ledgers them.
        """
        report = PublishReport()
        if not records:
            return report

        semaphore = asyncio.Semaphore(self.concurrency)
        batches = [records[i : i + self.batch_size] for i in range(0, len(records), self.batch_size)]

        for index, batch in enumerate(batches):
            if self.stop_event is not None and self.stop_event.is_set():
                remaining = [r for b in batches[index:] for r in b]
                logger.warning(f"Shutdown requested; {len(remaining)} records not published this tick")
                report.failed.extend(remaining)
                break

            if index > 0 and self.batch_pause_s > 0:
                await self._sleep(self.batch_pause_s)

            results = await asyncio.gather(
                *(self._publish_one(semaphore, record) for record in batch), return_exceptions=True
            )
            report.batches += 1

            for record, result in zip(batch, results):
                if isinstance(result, PublishFailure):
                    report.failed.append(record)
                    report.errors.append(result)
                    logger.warning(str(result))
                elif isinstance(result, BaseException):
                    raise result
                else:
                    report.published.append(record)
                    report.last_published_at = result

            logger.debug(
                f"Batch {index + 1}/{len(batches)} to '{self.queue}': "
                f"{len(report.published)} published, {len(report.failed)} failed so far"
            )

        self.total_published += len(report.published)
        self.total_failed += len(report.failed)
        if report.last_published_at is not None:
            self.last_published_at = report.last_published_at

        logger.info(
            f"Published {len(report.published)}/{len(records)} records to '{self.queue}' "
            f"in {report.batches} batches ({len(report.failed)} failed)"
        )
        return report

    async def _publish_one(self, semaphore: asyncio.Semaphore, record: FlashRecord) -> float:
        async with semaphore:
            try:
                await asyncio.wait_for(
                    self.adapter.publish(self.queue, Message.from_record(record)), timeout=self.publish_timeout_s
                )
            except asyncio.TimeoutError as e:
                raise PublishFailure(record.id, f"timed out after {self.publish_timeout_s}s", cause=e) from e
            except Exception as e:
                raise PublishFailure(record.id, str(e) or type(e).__name__, cause=e) from e
        return time.time()

    def stats(self) -> dict[str, Any]:
        """Cumulative publisher statistics since construction."""
        return {
            "queue": self.queue,
            "total_published": self.total_published,
            "total_failed": self.total_failed,
            "last_published_at": self.last_published_at,
        }
