"""
Outbound queue for the Vault server.

This module provides a pluggable publisher interface supporting:
- AMQP brokers through aio-pika (production)
- In-memory (for testing)

Invariants:
    - Publishing never rolls back the write that triggered it
    - Consumers must tolerate duplicate messages

How to change safely:
    - New backends must implement the OutboundQueue protocol
"""

from .amqp import AmqpQueue
from .base import (
    TEMPLATE_INVITE_ORG,
    TEMPLATE_INVITE_STORE,
    OutboundQueue,
    QueueConnectionError,
    QueueError,
    QueueMessage,
    create_queue,
)
from .memory import InMemoryQueue

__all__ = [
    # Protocol and types
    "OutboundQueue",
    "QueueMessage",
    "QueueError",
    "QueueConnectionError",
    "TEMPLATE_INVITE_ORG",
    "TEMPLATE_INVITE_STORE",
    # Factory
    "create_queue",
    # Implementations
    "AmqpQueue",
    "InMemoryQueue",
]
