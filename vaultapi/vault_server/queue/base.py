"""
Base protocol and types for the outbound message queue.

The server publishes invitation emails as JSON messages; an external worker
consumes them and sends mail. Publishing is at-least-once: the consumer must
tolerate duplicates (e.g. after an invitation resend).

Invariants:
    - A failed publish raises QueueError; callers decide whether it is fatal
    - Message bodies are UTF-8 JSON with stable key names
    - Backends hold no connection between publishes unless they say so

How to change safely:
    - Protocol changes require updating all implementations
    - Add message fields; never rename existing ones
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ..errors import ErrorCode, QueueError

if TYPE_CHECKING:
    from ..config import QueueConfig

logger = logging.getLogger(__name__)

TEMPLATE_INVITE_ORG = "invite-org"
TEMPLATE_INVITE_STORE = "invite-store"


class QueueConnectionError(QueueError):
    """Broker could not be reached."""

    default_code = ErrorCode.QUEUE_CONNECTION


@dataclass(frozen=True)
class QueueMessage:
    """Invitation email request.

    Attributes:
        template: Mail template (invite-org, invite-store)
        to: Recipient email
        at_user: Display name of the recipient (may be empty)
        by_user: Display name or alias of the inviting user
        code: Invitation UID
        message: Free text from the inviting user
        object_name: Name of the organization or store
        expiration: Expiry as an ISO-8601 UTC timestamp
    """

    template: str
    to: str
    at_user: str
    by_user: str
    code: str
    message: str
    object_name: str
    expiration: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")


@runtime_checkable
class OutboundQueue(Protocol):
    """Protocol for outbound queue backends.

    Example:
        >>> queue = create_queue(config.queue)
        >>> await queue.publish(message)
    """

    async def publish(self, message: QueueMessage, queue: str | None = None) -> None:
        """Publish one message.

        Args:
            message: Message to publish
            queue: Queue name override (default: backend's configured name)

        Raises:
            QueueError: If the message was not accepted by the broker
        """
        ...

    async def close(self) -> None:
        """Release backend resources."""
        ...


def create_queue(config: QueueConfig) -> OutboundQueue:
    """Factory: AMQP queue when a broker URL is configured, else in-memory."""
    from .amqp import AmqpQueue
    from .memory import InMemoryQueue

    if config.url:
        return AmqpQueue(config)

    logger.warning("No queue.url configured; invitation messages stay in memory")
    return InMemoryQueue(name=config.name)
