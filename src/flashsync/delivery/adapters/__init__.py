"""
Delivery queue adapters.
"""

from flashsync.delivery.adapters.base import Message, QueueAdapter
from flashsync.delivery.adapters.memory import InMemoryAdapter
from flashsync.delivery.adapters.rabbitmq import RabbitMQAdapter

__all__ = ["Message", "QueueAdapter", "InMemoryAdapter", "RabbitMQAdapter"]
