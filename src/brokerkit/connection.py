"""
Broker connection lifecycle.

``ConnectionManager`` owns the single robust connection of a process, the
publisher channel pool and the set of consumer channels handed out so far.
It is created once at startup and passed explicitly to every publisher and
consumer.

``connect()``:

1. opens a robust connection (aio-pika re-establishes it after a drop and
   re-attaches existing channels, so channel handles stay valid)
2. registers close/reconnect callbacks, which only log and update ``state``
3. declares the well-known exchanges on a transient channel
4. fills the publisher channel pool

``disconnect()`` tears down in a fixed order, finishing each phase before the
next one starts:

1. every tracked consumer channel (closed concurrently)
2. every publisher channel, then the pool bookkeeping
3. the connection

Individual close failures are logged and never stop the teardown.

Example:
    >>> async with ConnectionManager(BrokerSettings()) as manager:
    ...     async with manager.publisher_channel() as channel:
    ...         exchange = await channel.get_exchange(manager.exchange_names.events)
    ...         await exchange.publish(message, routing_key="order.paid")
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractRobustConnection

from brokerkit.channels._closing import close_quietly
from brokerkit.channels.consumer import ConsumerChannel, provision_consumer_channel
from brokerkit.channels.options import ConsumerChannelOptions
from brokerkit.channels.pool import PublisherChannelPool
from brokerkit.config import BrokerSettings
from brokerkit.exceptions import ChannelCreationError, NotConnectedError
from brokerkit.topology import ExchangeNames, bootstrap_topology

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Lifecycle state of the broker connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


class ConnectionManager:
    """
    Owns the broker connection and every channel opened on it.

    Args:
        settings: Connection settings, BrokerSettings() (environment) when None
    """

    def __init__(self, settings: BrokerSettings | None = None) -> None:
        self._settings = settings or BrokerSettings()
        self._exchange_names = ExchangeNames.for_application(self._settings.application)
        self._connection: AbstractRobustConnection | None = None
        self._state = ConnectionState.DISCONNECTED
        self._pool = PublisherChannelPool(self._open_channel, size=self._settings.channel_pool_size)
        self._consumer_channels: set[ConsumerChannel] = set()
        self._reconnections = 0

    @property
    def settings(self) -> BrokerSettings:
        return self._settings

    @property
    def exchange_names(self) -> ExchangeNames:
        return self._exchange_names

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connection(self) -> AbstractRobustConnection | None:
        return self._connection

    @property
    def publisher_pool(self) -> PublisherChannelPool:
        return self._pool

    @property
    def consumer_channels(self) -> frozenset[ConsumerChannel]:
        return frozenset(self._consumer_channels)

    @property
    def reconnections(self) -> int:
        """Number of times the transport restored the connection."""
        return self._reconnections

    def is_connected(self) -> bool:
        return (
            self._state is ConnectionState.CONNECTED
            and self._connection is not None
            and not self._connection.is_closed
        )

    def is_channel_connected(self) -> bool:
        """True when connected and at least one publisher channel is open."""
        return self.is_connected() and len(self._pool) > 0

    async def connect(self) -> None:
        """
        Connect, declare the well-known exchanges and fill the publisher pool.

        Raises:
            Exception: Whatever the transport raised; partial state is torn
                down before the error propagates
        """
        if self._connection is not None or self._state is ConnectionState.CONNECTING:
            logger.warning(f"ConnectionManager already {self._state.value}, ignoring connect()")
            return

        self._state = ConnectionState.CONNECTING
        logger.info(
            f"Connecting to RabbitMQ at {self._settings.host}:{self._settings.port}",
            extra={"rabbitmq_url": self._settings.safe_url},
        )

        try:
            self._connection = await aio_pika.connect_robust(
                self._settings.url,
                heartbeat=self._settings.heartbeat,
                reconnect_interval=self._settings.reconnect_interval,
            )

            # aio-pika's callback type hints are narrower than what it calls
            self._connection.reconnect_callbacks.add(self._on_reconnect)  # type: ignore[arg-type]
            self._connection.close_callbacks.add(
                self._on_connection_close  # type: ignore[arg-type]
            )

            await bootstrap_topology(self._connection, self._exchange_names)
            await self._pool.fill()

        except Exception as e:
            logger.error(
                f"Failed to connect to RabbitMQ: {e}",
                exc_info=True,
                extra={
                    "rabbitmq_url": self._settings.safe_url,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            await self.disconnect()
            raise

        self._state = ConnectionState.CONNECTED
        logger.info(
            "Connected to RabbitMQ",
            extra={
                "rabbitmq_url": self._settings.safe_url,
                "publisher_channels": len(self._pool),
                "management_url": self._settings.management_url,
            },
        )

    async def disconnect(self) -> None:
        """
        Close consumer channels, then publisher channels, then the connection.

        Never raises for close failures; they are logged.
        """
        self._state = ConnectionState.CLOSING

        consumer_channels = list(self._consumer_channels)
        if consumer_channels:
            logger.info(f"Closing consumer channels ({len(consumer_channels)})")
        await asyncio.gather(
            *(close_quietly(cc.channel, "consumer") for cc in consumer_channels)
        )
        self._consumer_channels.clear()

        await self._pool.close()

        if self._connection is not None:
            try:
                await self._connection.close()
            except Exception as e:
                logger.error(
                    f"Failed to close RabbitMQ connection: {e}",
                    exc_info=True,
                    extra={"error": str(e), "error_type": type(e).__name__},
                )
            self._connection = None

        self._state = ConnectionState.DISCONNECTED
        logger.info("Disconnected from RabbitMQ")

    async def __aenter__(self) -> ConnectionManager:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.disconnect()

    # =========================================================================
    # Publisher channels
    # =========================================================================

    async def _open_channel(self) -> AbstractChannel:
        if self._connection is None:
            raise NotConnectedError("open a channel")
        return await self._connection.channel()

    async def get_publisher_channel(self) -> AbstractChannel:
        """
        Borrow a publisher channel; grows the pool if all are in use.

        Pair every call with release_publisher_channel(), or use
        publisher_channel() instead.

        Raises:
            NotConnectedError: If connect() has not been called
            ChannelCreationError: If the pool had to grow and could not
        """
        if self._connection is None:
            raise NotConnectedError("get a publisher channel")
        return await self._pool.acquire()

    def release_publisher_channel(self, channel: AbstractChannel) -> None:
        self._pool.release(channel)

    @contextlib.asynccontextmanager
    async def publisher_channel(self) -> AsyncIterator[AbstractChannel]:
        """Borrow a publisher channel for the duration of the block."""
        channel = await self.get_publisher_channel()
        try:
            yield channel
        finally:
            self.release_publisher_channel(channel)

    # =========================================================================
    # Consumer channels
    # =========================================================================

    async def create_consumer_channel(self, options: ConsumerChannelOptions) -> ConsumerChannel:
        """
        Open a dedicated channel and provision its exchange, queue, binding
        and prefetch before returning it.

        The channel is tracked until remove_consumer_channel() or disconnect().

        Raises:
            NotConnectedError: If connect() has not been called
            ChannelCreationError: If opening or provisioning the channel failed
        """
        if self._connection is None:
            raise NotConnectedError("create a consumer channel")

        logger.info(
            f"Creating consumer channel for queue: {options.queue_name}",
            extra={"queue_name": options.queue_name},
        )

        try:
            channel = await self._connection.channel()
        except Exception as e:
            logger.error(
                f"Failed to open consumer channel for queue {options.queue_name}: {e}",
                exc_info=True,
                extra={"queue_name": options.queue_name, "error_type": type(e).__name__},
            )
            raise ChannelCreationError("consumer", str(e), queue_name=options.queue_name) from e

        try:
            consumer_channel = await provision_consumer_channel(
                channel, options, default_exchange=self._exchange_names.events
            )
        except Exception as e:
            logger.error(
                f"Failed to provision consumer channel for queue {options.queue_name}: {e}",
                exc_info=True,
                extra={"queue_name": options.queue_name, "error_type": type(e).__name__},
            )
            await close_quietly(channel, "consumer")
            raise ChannelCreationError("consumer", str(e), queue_name=options.queue_name) from e

        self._consumer_channels.add(consumer_channel)
        logger.info(
            f"Consumer channel ready for queue: {options.queue_name}",
            extra={
                "queue_name": options.queue_name,
                "consumer_channels": len(self._consumer_channels),
            },
        )
        return consumer_channel

    async def remove_consumer_channel(self, consumer_channel: ConsumerChannel) -> None:
        """Close a consumer channel and stop tracking it. Untracked channels are ignored."""
        if consumer_channel not in self._consumer_channels:
            logger.warning(
                f"Consumer channel for queue {consumer_channel.queue_name} is not tracked, "
                "ignoring",
                extra={"queue_name": consumer_channel.queue_name},
            )
            return

        await close_quietly(consumer_channel.channel, "consumer")
        self._consumer_channels.discard(consumer_channel)
        logger.info(
            f"Consumer channel removed for queue: {consumer_channel.queue_name}",
            extra={
                "queue_name": consumer_channel.queue_name,
                "consumer_channels": len(self._consumer_channels),
            },
        )

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def get_channel_stats(self) -> dict[str, dict[str, int]]:
        """
        Channel counts for monitoring.

        Returns:
            ``{"publisherChannels": {"total", "inUse", "available"},
            "consumerChannels": {"total"}}``
        """
        return {
            "publisherChannels": self._pool.stats().to_dict(),
            "consumerChannels": {"total": len(self._consumer_channels)},
        }

    # =========================================================================
    # Connection callbacks
    # =========================================================================

    async def _on_reconnect(self, connection: AbstractRobustConnection) -> None:
        self._reconnections += 1
        self._state = ConnectionState.CONNECTED
        logger.info(
            "RabbitMQ connection restored",
            extra={
                "reconnections": self._reconnections,
                "publisher_channels": len(self._pool),
                "consumer_channels": len(self._consumer_channels),
            },
        )

    def _on_connection_close(
        self,
        connection: AbstractRobustConnection | None,
        exception: BaseException | None,
    ) -> None:
        # Synchronous: aio-pika's close_callbacks interface
        if exception:
            if self._state is ConnectionState.CONNECTED:
                self._state = ConnectionState.CONNECTING
            logger.warning(
                f"RabbitMQ connection lost: {exception}",
                extra={
                    "error": str(exception),
                    "error_type": type(exception).__name__,
                    "reconnections": self._reconnections,
                },
            )
        else:
            logger.info(
                "RabbitMQ connection closed",
                extra={"reconnections": self._reconnections},
            )

    def __repr__(self) -> str:
        return (
            f"ConnectionManager(url={self._settings.safe_url!r}, state={self._state.value}, "
            f"publisher_channels={len(self._pool)}, "
            f"consumer_channels={len(self._consumer_channels)})"
        )


__all__ = [
    "ConnectionManager",
    "ConnectionState",
]
