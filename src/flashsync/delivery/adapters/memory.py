"""
In-memory delivery adapter.

Keeps published messages in process. Used by tests and by ``flashsync run``
when no queue URL is configured.

Example:
    adapter = InMemoryAdapter(fail_ids={3})

    async with adapter:
        await adapter.publish("flashes", Message.from_record(record))

    adapter.get_queue_messages("flashes")
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Iterable

from flashsync.delivery.adapters.base import Message, QueueAdapter


class InMemoryAdapter(QueueAdapter):
    """
    In-memory delivery adapter.

    Features:
    - No external dependencies
    - Injectable failures by message id (``fail_ids``) for failure-path tests
    - Optional per-publish delay, with in-flight tracking to observe concurrency
    """

    def __init__(self, fail_ids: Iterable[int | str] | None = None, delay_s: float = 0.0):
        self.fail_ids = {str(i) for i in fail_ids or ()}
        self.delay_s = delay_s
        self._queues: dict[str, list[Message]] = defaultdict(list)
        self._connected = False
        self.in_flight = 0
        self.max_in_flight = 0
        self.publish_calls = 0

    async def connect(self) -> None:
        """No-op for in-memory adapter."""
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def publish(self, queue: str, message: Message) -> None:
        self.publish_calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
            if message.message_id in self.fail_ids:
                raise ConnectionError(f"Injected publish failure for message {message.message_id}")
            self._queues[queue].append(message)
        finally:
            self.in_flight -= 1

    def get_queue_messages(self, queue: str) -> list[Message]:
        """Get all messages published to a queue (for testing)."""
        return list(self._queues.get(queue, []))

    def published_ids(self, queue: str) -> list[int]:
        return [int(m.body["id"]) for m in self._queues.get(queue, [])]

    def clear_queue(self, queue: str) -> None:
        self._queues[queue] = []

    @property
    def is_connected(self) -> bool:
        return self._connected
