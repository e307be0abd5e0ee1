"""Unit tests for EventPublisher."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from aio_pika import DeliveryMode, Message
from pydantic import ValidationError

from brokerkit.connection import ConnectionManager
from brokerkit.events.envelope import EventEnvelope
from brokerkit.exceptions import NotConnectedError
from brokerkit.handlers.registry import HandlerRegistry
from brokerkit.observability.tracer import MockTracer, SpanKindEnum
from brokerkit.publisher import EventPublisher, PublishOptions


@pytest.fixture
def sleep_mock() -> Iterator[AsyncMock]:
    with patch("brokerkit.publisher.asyncio.sleep", new_callable=AsyncMock) as mocked:
        yield mocked


async def events_exchange(manager: ConnectionManager) -> Any:
    """The events exchange handle of the first pool channel (the one borrowed first)."""
    channel = manager.publisher_pool.channels[0]
    return await channel.get_exchange(manager.exchange_names.events)


class TestPublishOptions:
    """Tests for PublishOptions validation."""

    def test_defaults(self) -> None:
        options = PublishOptions()

        assert options.priority is None
        assert options.expiration is None
        assert options.persistent is True
        assert options.max_retries == 0

    def test_negative_retries_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PublishOptions(max_retries=-1)

    def test_priority_range(self) -> None:
        with pytest.raises(ValidationError):
            PublishOptions(priority=256)


class TestPublish:
    """Tests for publishing envelopes to the events exchange."""

    async def test_publishes_to_events_exchange_with_event_type_key(
        self, manager: ConnectionManager, make_envelope: Callable[..., EventEnvelope]
    ) -> None:
        envelope = make_envelope("order.paid", user_id=42, data={"orderId": 7})

        await EventPublisher(manager).publish(envelope)

        exchange = await events_exchange(manager)
        assert exchange.name == "app.events"
        [(message, key)] = exchange.published
        assert key == "order.paid"
        assert json.loads(message.body)["data"] == {"orderId": 7}

    async def test_message_properties(
        self, manager: ConnectionManager, make_envelope: Callable[..., EventEnvelope]
    ) -> None:
        envelope = make_envelope("order.paid", event_id="evt-9")

        await EventPublisher(manager).publish(envelope)

        [(message, _)] = (await events_exchange(manager)).published
        assert message.content_type == "application/json"
        assert message.delivery_mode == DeliveryMode.PERSISTENT
        assert message.message_id == "evt-9"
        assert message.type == "order.paid"
        assert message.priority == Message(body=b"").priority

    async def test_not_persistent(
        self, manager: ConnectionManager, make_envelope: Callable[..., EventEnvelope]
    ) -> None:
        await EventPublisher(manager).publish(
            make_envelope("a.b"), PublishOptions(persistent=False)
        )

        [(message, _)] = (await events_exchange(manager)).published
        assert message.delivery_mode == DeliveryMode.NOT_PERSISTENT

    async def test_channel_released_after_publish(
        self, manager: ConnectionManager, make_envelope: Callable[..., EventEnvelope]
    ) -> None:
        await EventPublisher(manager).publish(make_envelope("a.b"))

        assert manager.publisher_pool.in_use == frozenset()

    async def test_custom_exchange(
        self, manager: ConnectionManager, make_envelope: Callable[..., EventEnvelope]
    ) -> None:
        publisher = EventPublisher(manager, exchange_name="app.commands")

        await publisher.publish(make_envelope("order.cancel"))

        channel = manager.publisher_pool.channels[0]
        exchange = await channel.get_exchange("app.commands")
        assert [key for _, key in exchange.published] == ["order.cancel"]

    async def test_requires_connection(
        self, settings: Any, make_envelope: Callable[..., EventEnvelope]
    ) -> None:
        publisher = EventPublisher(ConnectionManager(settings))

        with pytest.raises(NotConnectedError):
            await publisher.publish(make_envelope("a.b"))

    async def test_producer_span(
        self, manager: ConnectionManager, make_envelope: Callable[..., EventEnvelope]
    ) -> None:
        tracer = MockTracer()

        await EventPublisher(manager, tracer=tracer).publish(make_envelope("order.paid"))

        assert tracer.span_names == ["brokerkit.publish"]
        assert tracer.kinds == [SpanKindEnum.PRODUCER]
        attributes = tracer.spans[0][1] or {}
        assert attributes["messaging.destination.name"] == "app.events"
        assert attributes["messaging.rabbitmq.destination.routing_key"] == "order.paid"


class TestPublishRetry:
    """Tests for PublishOptions.max_retries."""

    async def test_no_retry_by_default(
        self,
        manager: ConnectionManager,
        make_envelope: Callable[..., EventEnvelope],
        sleep_mock: AsyncMock,
    ) -> None:
        (await events_exchange(manager)).fail_publish = 1

        with pytest.raises(ConnectionError):
            await EventPublisher(manager).publish(make_envelope("a.b"))

        sleep_mock.assert_not_called()
        assert manager.publisher_pool.in_use == frozenset()

    async def test_retries_then_succeeds(
        self,
        manager: ConnectionManager,
        make_envelope: Callable[..., EventEnvelope],
        sleep_mock: AsyncMock,
    ) -> None:
        exchange = await events_exchange(manager)
        exchange.fail_publish = 2

        await EventPublisher(manager).publish(make_envelope("a.b"), PublishOptions(max_retries=3))

        assert len(exchange.published) == 1
        assert [c.args[0] for c in sleep_mock.await_args_list] == [1.0, 2.0]

    async def test_exhausted_retries_raise(
        self,
        manager: ConnectionManager,
        make_envelope: Callable[..., EventEnvelope],
        sleep_mock: AsyncMock,
    ) -> None:
        (await events_exchange(manager)).fail_publish = 10

        with pytest.raises(ConnectionError):
            await EventPublisher(manager).publish(
                make_envelope("a.b"), PublishOptions(max_retries=2)
            )

        assert sleep_mock.await_count == 2


class TestConvenienceMethods:
    """Tests for emit_priority, emit_with_expiration and publish_raw."""

    async def test_emit_priority(
        self, manager: ConnectionManager, make_envelope: Callable[..., EventEnvelope]
    ) -> None:
        await EventPublisher(manager).emit_priority(make_envelope("notification.created"), 9)

        [(message, _)] = (await events_exchange(manager)).published
        assert message.priority == 9
        assert message.delivery_mode == DeliveryMode.PERSISTENT

    async def test_emit_with_expiration(
        self, manager: ConnectionManager, make_envelope: Callable[..., EventEnvelope]
    ) -> None:
        await EventPublisher(manager).emit_with_expiration(make_envelope("a.b"), 5000)

        [(message, _)] = (await events_exchange(manager)).published
        assert message.properties.expiration == "5000"

    async def test_publish_raw(self, manager: ConnectionManager) -> None:
        await EventPublisher(manager).publish_raw(
            "app.commands", "reindex", b"\x00\x01", headers={"x-source": "cron"}
        )

        channel = manager.publisher_pool.channels[0]
        [(message, key)] = (await channel.get_exchange("app.commands")).published
        assert key == "reindex"
        assert message.body == b"\x00\x01"
        assert message.content_type == "application/octet-stream"
        assert message.headers == {"x-source": "cron"}


class TestLocalDispatch:
    """Tests for emit_local and emit_all."""

    async def test_emit_local_does_not_publish(
        self, manager: ConnectionManager, make_envelope: Callable[..., EventEnvelope]
    ) -> None:
        handled: list[EventEnvelope] = []

        async def handler(envelope: EventEnvelope) -> None:
            handled.append(envelope)

        registry = HandlerRegistry()
        registry.register("review.created", handler)
        envelope = make_envelope("review.created")

        await EventPublisher(manager, registry=registry).emit_local(envelope)

        assert handled == [envelope]
        assert (await events_exchange(manager)).published == []

    async def test_emit_all_dispatches_locally_first(
        self, manager: ConnectionManager, make_envelope: Callable[..., EventEnvelope]
    ) -> None:
        exchange = await events_exchange(manager)
        published_before_handler: list[int] = []

        async def handler(envelope: EventEnvelope) -> None:
            published_before_handler.append(len(exchange.published))

        registry = HandlerRegistry()
        registry.register("review.created", handler)

        await EventPublisher(manager, registry=registry).emit_all(make_envelope("review.created"))

        assert published_before_handler == [0]
        assert len(exchange.published) == 1

    async def test_default_registry_is_empty(self, manager: ConnectionManager) -> None:
        assert len(EventPublisher(manager).registry) == 0
