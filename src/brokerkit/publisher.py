"""
Event publisher.

Publishes event envelopes to the application's events exchange through a
borrowed publisher channel, and optionally dispatches them in-process through
a HandlerRegistry.

- ``emit_local``: in-process only, no broker round-trip
- ``publish``: broker only, routing key = ``event_type``
- ``emit_all``: in-process first, then broker

Example:
    >>> publisher = EventPublisher(manager, registry=registry)
    >>> envelope = EventEnvelope(event_type="order.paid", user_id=42, data={"orderId": 7})
    >>> await publisher.publish(envelope)
    >>> await publisher.emit_priority(envelope, priority=9)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any

from aio_pika import DeliveryMode, Message
from pydantic import BaseModel, ConfigDict, Field

from brokerkit.connection import ConnectionManager
from brokerkit.events.envelope import EventEnvelope
from brokerkit.handlers.registry import HandlerRegistry
from brokerkit.handlers.retry import RetryConfig, calculate_backoff
from brokerkit.observability.attributes import (
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_ROUTING_KEY,
    ATTR_MESSAGING_SYSTEM,
)
from brokerkit.observability.tracer import SpanKindEnum, Tracer, create_tracer

logger = logging.getLogger(__name__)


class PublishOptions(BaseModel):
    """
    Per-message publish options.

    Attributes:
        priority: AMQP priority; only honoured by queues declared with max_priority
        expiration: Per-message TTL in milliseconds
        persistent: Persistent delivery mode (default True)
        max_retries: Extra publish attempts after a failure, with exponential backoff
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    priority: int | None = Field(default=None, ge=0, le=255)
    expiration: int | None = Field(default=None, ge=0)
    persistent: bool = True
    max_retries: int = Field(default=0, ge=0)


class EventPublisher:
    """
    Publishes envelopes through a ConnectionManager's publisher pool.

    Args:
        manager: Connected ConnectionManager
        exchange_name: Target exchange, defaults to the application's events exchange
        registry: Registry used by emit_local(), an empty one when None
        retry_config: Backoff schedule for publish retries (max_retries comes
            from PublishOptions)
        tracer: Optional tracer, created from settings when None
    """

    def __init__(
        self,
        manager: ConnectionManager,
        *,
        exchange_name: str | None = None,
        registry: HandlerRegistry | None = None,
        retry_config: RetryConfig | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        self._manager = manager
        self._exchange_name = exchange_name or manager.exchange_names.events
        self._registry = registry if registry is not None else HandlerRegistry()
        self._retry_config = retry_config or RetryConfig()
        self._tracer = tracer or create_tracer(__name__, manager.settings.enable_tracing)

    @property
    def exchange_name(self) -> str:
        return self._exchange_name

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    async def emit_local(self, envelope: EventEnvelope) -> None:
        """Dispatch to in-process handlers without touching the broker."""
        logger.info(
            f"Local event: {envelope.event_type} | ID: {envelope.event_id}",
            extra={"event_type": envelope.event_type, "event_id": envelope.event_id},
        )
        await self._registry.dispatch(envelope)

    async def publish(self, envelope: EventEnvelope, options: PublishOptions | None = None) -> None:
        """
        Publish an envelope to the exchange with ``event_type`` as routing key.

        Raises:
            NotConnectedError: If the manager is not connected
            Exception: The last publish error once retries are exhausted
        """
        options = options or PublishOptions()
        logger.info(
            f"Publishing event: {envelope.event_type} | ID: {envelope.event_id}",
            extra={
                "event_type": envelope.event_type,
                "event_id": envelope.event_id,
                "exchange": self._exchange_name,
            },
        )

        message = self._create_message(envelope, options)
        with self._tracer.span_with_kind(
            "brokerkit.publish",
            SpanKindEnum.PRODUCER,
            {
                ATTR_EVENT_ID: envelope.event_id,
                ATTR_EVENT_TYPE: envelope.event_type,
                ATTR_MESSAGING_SYSTEM: "rabbitmq",
                ATTR_MESSAGING_DESTINATION: self._exchange_name,
                ATTR_MESSAGING_ROUTING_KEY: envelope.event_type,
                ATTR_MESSAGING_OPERATION: "publish",
            },
        ):
            await self._publish_with_retry(
                self._exchange_name, envelope.event_type, message, options.max_retries
            )

        logger.info(
            f"Event published: {envelope.event_type}",
            extra={"event_type": envelope.event_type, "event_id": envelope.event_id},
        )

    async def emit_all(
        self, envelope: EventEnvelope, options: PublishOptions | None = None
    ) -> None:
        """Dispatch in-process, then publish to the broker."""
        await self.emit_local(envelope)
        await self.publish(envelope, options)

    async def emit_priority(self, envelope: EventEnvelope, priority: int) -> None:
        await self.publish(envelope, PublishOptions(priority=priority, persistent=True))

    async def emit_with_expiration(self, envelope: EventEnvelope, expiration_ms: int) -> None:
        await self.publish(envelope, PublishOptions(expiration=expiration_ms, persistent=True))

    async def publish_raw(
        self,
        exchange_name: str,
        routing_key: str,
        body: bytes,
        *,
        content_type: str = "application/octet-stream",
        headers: dict[str, Any] | None = None,
        options: PublishOptions | None = None,
    ) -> None:
        """Publish pre-encoded bytes to any existing exchange."""
        options = options or PublishOptions()
        message = Message(
            body=body,
            content_type=content_type,
            headers=headers or {},
            delivery_mode=_delivery_mode(options),
            priority=options.priority,
            expiration=_expiration(options),
        )
        await self._publish_with_retry(exchange_name, routing_key, message, options.max_retries)

    def _create_message(self, envelope: EventEnvelope, options: PublishOptions) -> Message:
        return Message(
            body=envelope.to_bytes(),
            content_type="application/json",
            content_encoding="utf-8",
            delivery_mode=_delivery_mode(options),
            message_id=envelope.event_id,
            type=envelope.event_type,
            timestamp=envelope.timestamp,
            priority=options.priority,
            expiration=_expiration(options),
        )

    async def _publish_with_retry(
        self,
        exchange_name: str,
        routing_key: str,
        message: Message,
        max_retries: int,
    ) -> None:
        attempt = 0
        while True:
            try:
                async with self._manager.publisher_channel() as channel:
                    exchange = await channel.get_exchange(exchange_name, ensure=False)
                    await exchange.publish(message, routing_key=routing_key)
                return
            except Exception as e:
                logger.error(
                    f"Publish failed: {routing_key} -> {exchange_name}: {e}",
                    exc_info=True,
                    extra={
                        "exchange": exchange_name,
                        "routing_key": routing_key,
                        "attempt": attempt,
                        "max_retries": max_retries,
                        "error_type": type(e).__name__,
                    },
                )
                if attempt >= max_retries:
                    raise

            delay = calculate_backoff(attempt, self._retry_config)
            logger.warning(
                f"Retrying publish ({attempt + 1}/{max_retries}) in {delay:.2f}s: {routing_key}",
                extra={"routing_key": routing_key, "remaining": max_retries - attempt},
            )
            await asyncio.sleep(delay)
            attempt += 1


def _delivery_mode(options: PublishOptions) -> DeliveryMode:
    return DeliveryMode.PERSISTENT if options.persistent else DeliveryMode.NOT_PERSISTENT


def _expiration(options: PublishOptions) -> timedelta | None:
    if options.expiration is None:
        return None
    return timedelta(milliseconds=options.expiration)


__all__ = [
    "EventPublisher",
    "PublishOptions",
]
