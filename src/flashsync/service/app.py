"""
Wiring: builds the orchestrator and its collaborators from settings.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from flashsync.config.settings import SyncSettings
from flashsync.core.orchestrator import SyncOrchestrator
from flashsync.core.retry.ledger import RetryLedger
from flashsync.core.scheduling import SchedulePolicy
from flashsync.delivery.adapters import InMemoryAdapter, QueueAdapter, RabbitMQAdapter
from flashsync.delivery.publisher import DeliveryPublisher
from flashsync.service.scheduler import Scheduler
from flashsync.service.tasks import SyncTask
from flashsync.store.flashes import FlashStore
from flashsync.upstream.client import UpstreamClient
from flashsync.utils.logging import get_logger

logger = get_logger("flashsync.service.app")


def build_adapter(settings: SyncSettings) -> QueueAdapter:
    """RabbitMQ when a queue URL is configured, otherwise an in-memory dry-run adapter."""
    if settings.queue.url:
        return RabbitMQAdapter(settings.queue.url, prefetch_count=settings.publisher.concurrency)
    logger.warning("No queue.url configured (RABBITMQ_URL); publishing to an in-memory queue")
    return InMemoryAdapter()


def build_ledger(settings: SyncSettings) -> RetryLedger:
    return RetryLedger(settings.ledger.path, warn_entries=settings.ledger.warn_entries)


@asynccontextmanager
async def open_orchestrator(
    settings: SyncSettings,
    *,
    stop_event: asyncio.Event | None = None,
    adapter: QueueAdapter | None = None,
    store: FlashStore | None = None,
) -> AsyncIterator[SyncOrchestrator]:
    """
    Connect every collaborator, yield a ready orchestrator, then close them.

    Args:
        settings: Effective settings
        stop_event: Shared shutdown event; stops the publisher between batches
        adapter: Queue adapter override (default: from settings)
        store: Store override (default: from settings.store.url)
    """
    adapter = adapter or build_adapter(settings)
    store = store or FlashStore.from_url(settings.store.url, table=settings.store.table)
    publisher = DeliveryPublisher(
        adapter,
        settings.queue.queue,
        batch_size=settings.publisher.batch_size,
        concurrency=settings.publisher.concurrency,
        batch_pause_s=settings.publisher.batch_pause_s,
        publish_timeout_s=settings.queue.publish_timeout_s,
        stop_event=stop_event,
    )

    try:
        await asyncio.to_thread(store.ensure_schema)
        async with adapter, UpstreamClient(settings.upstream) as client:
            yield SyncOrchestrator(
                client=client,
                store=store,
                publisher=publisher,
                ledger=build_ledger(settings),
                policy=SchedulePolicy.from_settings(settings.schedule),
                allow_list=settings.allow_list,
                allow_list_table=settings.store.allow_list_table,
                allow_list_column=settings.store.allow_list_column,
                reprocess_unchanged=settings.schedule.reprocess_unchanged,
            )
    finally:
        await asyncio.to_thread(store.close)


def build_scheduler(settings: SyncSettings, orchestrator: SyncOrchestrator, stop_event: asyncio.Event) -> Scheduler:
    scheduler = Scheduler(stop_event=stop_event)
    sched = settings.schedule
    if sched.cron:
        scheduler.add(SyncTask(orchestrator), cron=sched.cron, timezone=sched.timezone)
    else:
        scheduler.add(SyncTask(orchestrator), every_s=sched.every_s)
    return scheduler
