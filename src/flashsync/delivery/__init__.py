"""Delivery of eligible records to the downstream queue."""

from flashsync.delivery.adapters import InMemoryAdapter, Message, QueueAdapter, RabbitMQAdapter
from flashsync.delivery.publisher import DeliveryPublisher, PublishReport

__all__ = [
    "DeliveryPublisher",
    "PublishReport",
    "QueueAdapter",
    "RabbitMQAdapter",
    "InMemoryAdapter",
    "Message",
]
