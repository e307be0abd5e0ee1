"""
Shared pytest fixtures for the brokerkit tests.

Unit tests never talk to a broker. They patch ``brokerkit.connection.aio_pika``
so that ``connect_robust`` returns a ``FakeConnection``. The fake connection
and its channels append every broker operation to one shared ``CallLog``, so
tests can assert on the order in which operations happened across channels.

Fixtures:
- call_log: the shared operation log
- fake_connection: a FakeConnection writing to call_log
- mock_aio_pika: aio_pika patched in brokerkit.connection
- settings: BrokerSettings with tracing disabled and a small pool
- manager: a connected ConnectionManager on top of fake_connection
- make_envelope: factory for EventEnvelope instances
"""

from __future__ import annotations

import itertools
from collections.abc import AsyncGenerator, Callable, Iterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from brokerkit.config import BrokerSettings
from brokerkit.connection import ConnectionManager
from brokerkit.events.envelope import EventEnvelope

# ============================================================================
# Broker doubles
# ============================================================================


class CallLog(list):
    """Ordered record of broker operations as ``(operation, target, details)``."""

    def ops(self, operation: str | None = None) -> list[tuple[str, Any, dict[str, Any]]]:
        if operation is None:
            return list(self)
        return [entry for entry in self if entry[0] == operation]

    def names(self) -> list[str]:
        return [entry[0] for entry in self]

    def index_of(self, operation: str, target: Any) -> int:
        for index, (op, tgt, _) in enumerate(self):
            if op == operation and tgt == target:
                return index
        raise ValueError(f"{operation} on {target!r} not logged")


class FakeExchange:
    def __init__(self, name: str, log: CallLog, fail_publish: int = 0) -> None:
        self.name = name
        self._log = log
        self.fail_publish = fail_publish
        self.published: list[tuple[Any, str]] = []

    async def publish(self, message: Any, routing_key: str, **kwargs: Any) -> None:
        if self.fail_publish > 0:
            self.fail_publish -= 1
            raise ConnectionError("publish failed")
        self.published.append((message, routing_key))
        self._log.append(("publish", self.name, {"routing_key": routing_key}))


class FakeQueue:
    def __init__(self, name: str, log: CallLog) -> None:
        self.name = name
        self._log = log
        self.callback: Callable[..., Any] | None = None
        self.consume_kwargs: dict[str, Any] = {}
        self._tags = itertools.count(1)

    async def bind(self, exchange: FakeExchange, routing_key: str | None = None) -> None:
        details = {"exchange": exchange.name, "routing_key": routing_key}
        self._log.append(("bind", self.name, details))

    async def consume(self, callback: Callable[..., Any], **kwargs: Any) -> str:
        self.callback = callback
        self.consume_kwargs = kwargs
        tag = f"ctag-{self.name}-{next(self._tags)}"
        self._log.append(("consume", self.name, {"consumer_tag": tag, **kwargs}))
        return tag

    async def cancel(self, consumer_tag: str) -> None:
        self.callback = None
        self._log.append(("cancel", self.name, {"consumer_tag": consumer_tag}))


class FakeChannel:
    """Channel double. ``number`` is the order in which it was opened (1-based)."""

    def __init__(self, number: int, log: CallLog) -> None:
        self.number = number
        self._log = log
        self.is_closed = False
        self.fail_close = False
        self.fail_declare_queue = False
        self.exchanges: dict[str, FakeExchange] = {}
        self.queues: dict[str, FakeQueue] = {}
        self.prefetch_count: int | None = None

    def __repr__(self) -> str:
        return f"FakeChannel(#{self.number})"

    async def declare_exchange(self, name: str, **kwargs: Any) -> FakeExchange:
        self._log.append(("declare_exchange", name, kwargs))
        exchange = self.exchanges.setdefault(name, FakeExchange(name, self._log))
        return exchange

    async def get_exchange(self, name: str, ensure: bool = True) -> FakeExchange:
        return self.exchanges.setdefault(name, FakeExchange(name, self._log))

    async def declare_queue(self, name: str, **kwargs: Any) -> FakeQueue:
        if self.fail_declare_queue:
            raise RuntimeError("PRECONDITION_FAILED - inequivalent arg 'x-message-ttl'")
        self._log.append(("declare_queue", name, kwargs))
        queue = self.queues.setdefault(name, FakeQueue(name, self._log))
        return queue

    async def set_qos(self, prefetch_count: int = 0, **kwargs: Any) -> None:
        self.prefetch_count = prefetch_count
        self._log.append(("set_qos", self.number, {"prefetch_count": prefetch_count}))

    async def close(self) -> None:
        self._log.append(("close_channel", self.number, {}))
        if self.fail_close:
            raise ConnectionError(f"channel {self.number} already broken")
        self.is_closed = True


class FakeConnection:
    """
    Robust connection double.

    ``channel_hook`` runs on every newly opened channel before it is returned,
    so tests can make specific channels misbehave. ``fail_channel_open`` makes
    the next ``channel()`` calls raise.
    """

    def __init__(self, log: CallLog) -> None:
        self._log = log
        self.channels: list[FakeChannel] = []
        self.is_closed = False
        self.fail_close = False
        self.fail_channel_open = 0
        self.channel_hook: Callable[[FakeChannel], None] | None = None
        self.reconnect_callbacks: set[Callable[..., Any]] = set()
        self.close_callbacks: set[Callable[..., Any]] = set()

    async def channel(self) -> FakeChannel:
        if self.fail_channel_open > 0:
            self.fail_channel_open -= 1
            raise ConnectionError("channel.open failed")
        channel = FakeChannel(len(self.channels) + 1, self._log)
        if self.channel_hook is not None:
            self.channel_hook(channel)
        self.channels.append(channel)
        self._log.append(("open_channel", channel.number, {}))
        return channel

    def channel_by_number(self, number: int) -> FakeChannel:
        return self.channels[number - 1]

    async def close(self) -> None:
        self._log.append(("close_connection", None, {}))
        if self.fail_close:
            raise ConnectionError("connection reset by peer")
        self.is_closed = True


class FakeIncomingMessage:
    """Incoming delivery double recording how it was settled."""

    def __init__(self, body: bytes, message_id: str | None = None) -> None:
        self.body = body
        self.message_id = message_id
        self.ack = AsyncMock()
        self.nack = AsyncMock()
        self.reject = AsyncMock()


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def call_log() -> CallLog:
    return CallLog()


@pytest.fixture
def fake_connection(call_log: CallLog) -> FakeConnection:
    return FakeConnection(call_log)


@pytest.fixture
def mock_aio_pika(fake_connection: FakeConnection) -> Iterator[MagicMock]:
    """Patch aio_pika in brokerkit.connection so connect_robust returns fake_connection."""
    with patch("brokerkit.connection.aio_pika") as mocked:
        mocked.connect_robust = AsyncMock(return_value=fake_connection)
        yield mocked


@pytest.fixture
def settings() -> BrokerSettings:
    return BrokerSettings(
        host="localhost",
        port=5672,
        user="guest",
        password="guest",
        vhost="/",
        channel_pool_size=3,
        application="app",
        enable_tracing=False,
    )


@pytest_asyncio.fixture
async def manager(
    settings: BrokerSettings, mock_aio_pika: MagicMock
) -> AsyncGenerator[ConnectionManager, None]:
    """A ConnectionManager connected to the fake connection."""
    connection_manager = ConnectionManager(settings)
    await connection_manager.connect()
    yield connection_manager
    if connection_manager.connection is not None:
        await connection_manager.disconnect()


@pytest.fixture
def make_envelope() -> Callable[..., EventEnvelope]:
    def factory(event_type: str = "message.sent", **kwargs: Any) -> EventEnvelope:
        return EventEnvelope(event_type=event_type, **kwargs)

    return factory


@pytest.fixture
def incoming_message() -> type[FakeIncomingMessage]:
    return FakeIncomingMessage
