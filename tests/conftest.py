"""
Shared fixtures for flashsync tests.
"""

import pytest
from helpers import QUEUE, FixedRandom, peak_clock

from flashsync.core.orchestrator import SyncOrchestrator
from flashsync.core.retry.ledger import RetryLedger
from flashsync.core.scheduling import SchedulePolicy
from flashsync.delivery.adapters import InMemoryAdapter
from flashsync.delivery.publisher import DeliveryPublisher
from flashsync.store.flashes import FlashStore


@pytest.fixture
def store():
    flash_store = FlashStore.from_url("duckdb://:memory:")
    flash_store.ensure_schema()
    yield flash_store
    flash_store.close()


@pytest.fixture
def ledger(tmp_path):
    return RetryLedger(tmp_path / "ledger.jsonl")


@pytest.fixture
def adapter():
    return InMemoryAdapter()


@pytest.fixture
def build_orchestrator(store, ledger, adapter):
    """Factory for an orchestrator over the in-memory store, tmp ledger and in-memory queue."""

    def _build(client, *, queue_adapter=None, rng=None, clock=peak_clock, **kwargs) -> SyncOrchestrator:
        publisher = DeliveryPublisher(
            queue_adapter or adapter,
            QUEUE,
            batch_size=kwargs.pop("batch_size", 50),
            concurrency=kwargs.pop("concurrency", 5),
            batch_pause_s=0,
            publish_timeout_s=kwargs.pop("publish_timeout_s", 5.0),
        )
        return SyncOrchestrator(
            client=client,
            store=kwargs.pop("flash_store", store),
            publisher=publisher,
            ledger=ledger,
            policy=kwargs.pop("policy", SchedulePolicy()),
            rng=rng or FixedRandom(0.99),
            clock=clock,
            **kwargs,
        )

    return _build
