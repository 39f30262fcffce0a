"""
In-memory queue implementation for testing and local development.

Messages are kept in a list per queue name. Setting fail = True makes every
publish raise QueueError, which lets tests exercise the 2490 warning path.

Invariants:
    - All data is lost on process exit
    - Publish order is preserved per queue
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from .base import QueueError, QueueMessage

logger = logging.getLogger(__name__)


class InMemoryQueue:
    """In-memory implementation of OutboundQueue.

    Example:
        >>> queue = InMemoryQueue()
        >>> await queue.publish(message)
        >>> queue.messages()[0].to
        'b@x'
    """

    def __init__(self, name: str = "action-incoming") -> None:
        self.name = name
        self.fail = False
        self._queues: dict[str, list[QueueMessage]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def publish(self, message: QueueMessage, queue: str | None = None) -> None:
        name = queue or self.name
        if self.fail:
            raise QueueError(details={"queue": name, "reason": "forced failure"})

        async with self._lock:
            self._queues[name].append(message)
        logger.debug("Queued message in memory", extra={"queue": name, "template": message.template})

    async def close(self) -> None:
        self._queues.clear()

    def messages(self, queue: str | None = None) -> list[QueueMessage]:
        """Messages published to a queue, oldest first."""
        return list(self._queues.get(queue or self.name, []))
