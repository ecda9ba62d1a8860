"""
Base queue adapter interface.

Delivery adapters push one message per eligible record onto a named durable
queue. The publisher only talks to this interface, so the broker can be
swapped (RabbitMQ in production, in-memory under test).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from flashsync.core.types import FlashRecord


@dataclass
class Message:
    """
    A message bound for the delivery queue.

    ``body`` is the full record as a self-describing dict.
    """

    body: dict[str, Any]
    message_id: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timestamp: datetime | None = None

    @classmethod
    def from_record(cls, record: FlashRecord) -> Message:
        return cls(
            body=record.to_dict(),
            message_id=str(record.id),
            headers={"x-feed-fingerprint": record.feed_fingerprint},
            timestamp=datetime.now(UTC),
        )


class QueueAdapter(ABC):
    """
    Abstract base class for delivery queue adapters.

    Implementations provided:
    - RabbitMQAdapter: RabbitMQ/AMQP (aio-pika), durable queue, persistent messages
    - InMemoryAdapter: In-process adapter for tests and dry runs
    """

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the broker."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Gracefully disconnect from the broker."""
        ...

    @abstractmethod
    async def publish(self, queue: str, message: Message) -> None:
        """
        Publish one message; returns once the broker has accepted it.

        Raises:
            Exception: Any broker or connection error
        """
        ...

    async def __aenter__(self) -> QueueAdapter:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()
