"""
Unit tests for the outbound queue.

Tests cover:
- Message serialization
- In-memory publishing and forced failures
- Backend selection
- AMQP failure mapping
"""

import json

import aio_pika
import pytest

from vaultapi.vault_server.config import QueueConfig
from vaultapi.vault_server.errors import ErrorCode
from vaultapi.vault_server.queue import (
    TEMPLATE_INVITE_ORG,
    AmqpQueue,
    InMemoryQueue,
    QueueConnectionError,
    QueueError,
    QueueMessage,
    create_queue,
)


def make_message(to="bob@example.com"):
    return QueueMessage(
        template=TEMPLATE_INVITE_ORG,
        to=to,
        at_user="",
        by_user="alice",
        code="a" * 40,
        message="join us",
        object_name="Acme",
        expiration="2023-11-17T22:13:20Z",
    )


class TestQueueMessage:
    """Tests for QueueMessage."""

    def test_json_keys(self):
        body = json.loads(make_message().to_json())
        assert set(body) == {
            "template",
            "to",
            "at_user",
            "by_user",
            "code",
            "message",
            "object_name",
            "expiration",
        }
        assert body["template"] == "invite-org"


class TestInMemoryQueue:
    """Tests for InMemoryQueue."""

    @pytest.mark.asyncio
    async def test_publish_preserves_order(self):
        queue = InMemoryQueue()
        await queue.publish(make_message("a@x"))
        await queue.publish(make_message("b@x"))

        assert [m.to for m in queue.messages()] == ["a@x", "b@x"]

    @pytest.mark.asyncio
    async def test_named_queues(self):
        queue = InMemoryQueue()
        await queue.publish(make_message(), queue="other")

        assert queue.messages() == []
        assert len(queue.messages("other")) == 1

    @pytest.mark.asyncio
    async def test_forced_failure(self):
        queue = InMemoryQueue()
        queue.fail = True

        with pytest.raises(QueueError) as exc_info:
            await queue.publish(make_message())
        assert exc_info.value.code == ErrorCode.QUEUE
        assert queue.messages() == []

    @pytest.mark.asyncio
    async def test_close_drops_messages(self):
        queue = InMemoryQueue()
        await queue.publish(make_message())
        await queue.close()
        assert queue.messages() == []


class TestCreateQueue:
    """Tests for create_queue()."""

    def test_memory_without_url(self):
        queue = create_queue(QueueConfig(name="mail"))
        assert isinstance(queue, InMemoryQueue)
        assert queue.name == "mail"

    def test_amqp_with_url(self):
        assert isinstance(create_queue(QueueConfig(url="amqp://localhost/")), AmqpQueue)


class TestAmqpQueue:
    """Tests for AmqpQueue error mapping (no broker needed)."""

    @pytest.mark.asyncio
    async def test_unreachable_broker(self, monkeypatch):
        async def refuse(url):
            raise ConnectionRefusedError(url)

        monkeypatch.setattr(aio_pika, "connect_robust", refuse)
        queue = AmqpQueue(QueueConfig(url="amqp://localhost:1/", timeout=1.0))

        with pytest.raises(QueueConnectionError) as exc_info:
            await queue.publish(make_message())
        assert exc_info.value.code == ErrorCode.QUEUE_CONNECTION
