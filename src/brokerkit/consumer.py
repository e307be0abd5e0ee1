"""
Broker-facing dispatch loop.

An ``EventConsumer`` owns one consumer channel. Every delivery is decoded into
an EventEnvelope and dispatched through a HandlerRegistry, with each handler
wrapped by ``with_retry``. Acknowledgement is manual:

- all handlers succeeded (or none is registered): ``ack()``
- body is not a valid envelope: ``reject(requeue=False)``
- a handler exhausted its retries: ``nack(requeue=requeue_on_failure)``

With ``requeue_on_failure=False`` (the default) a failed message goes to the
queue's dead-letter exchange when one is configured, and is dropped otherwise.

Example:
    >>> options = ConsumerChannelOptions(
    ...     queue_name="secondhand.chat.incoming",
    ...     routing_key="message.sent",
    ...     queue_options=QueueOptions(dead_letter_exchange="secondhand.dlx"),
    ... )
    >>> async with EventConsumer(manager, options, registry) as consumer:
    ...     await shutdown_requested.wait()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from aio_pika.abc import AbstractIncomingMessage

from brokerkit.channels.consumer import ConsumerChannel
from brokerkit.channels.options import ConsumerChannelOptions
from brokerkit.connection import ConnectionManager
from brokerkit.events.envelope import EventEnvelope
from brokerkit.exceptions import EnvelopeDecodeError
from brokerkit.handlers.registry import HandlerRegistry
from brokerkit.handlers.retry import EventHandler, RetryConfig, with_retry
from brokerkit.observability.attributes import (
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_SYSTEM,
)
from brokerkit.observability.tracer import SpanKindEnum, Tracer, create_tracer

logger = logging.getLogger(__name__)


@dataclass
class ConsumerStats:
    """Delivery counters for one consumer."""

    received: int = 0
    succeeded: int = 0
    failed: int = 0
    rejected: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "received": self.received,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "rejected": self.rejected,
        }


class EventConsumer:
    """
    Consumes one queue and dispatches deliveries to registered handlers.

    Args:
        manager: Connected ConnectionManager
        options: Topology and prefetch for the consumer channel
        registry: Handlers to dispatch to
        retry_config: Retry schedule applied to every handler
        requeue_on_failure: Requeue instead of dead-lettering after exhaustion
        tracer: Optional tracer, created from settings when None
    """

    def __init__(
        self,
        manager: ConnectionManager,
        options: ConsumerChannelOptions,
        registry: HandlerRegistry,
        *,
        retry_config: RetryConfig | None = None,
        requeue_on_failure: bool = False,
        tracer: Tracer | None = None,
    ) -> None:
        self._manager = manager
        self._options = options
        self._registry = registry
        self._retry_config = retry_config or RetryConfig()
        self._requeue_on_failure = requeue_on_failure
        self._tracer = tracer or create_tracer(__name__, manager.settings.enable_tracing)
        self._consumer_channel: ConsumerChannel | None = None
        self._consumer_tag: str | None = None
        self._wrapped: dict[EventHandler, EventHandler] = {}
        self._stats = ConsumerStats()

    @property
    def queue_name(self) -> str:
        return self._options.queue_name

    @property
    def is_consuming(self) -> bool:
        """False once the consumer channel is closed, even before stop()."""
        return (
            self._consumer_tag is not None
            and self._consumer_channel is not None
            and not self._consumer_channel.is_closed
        )

    @property
    def stats(self) -> ConsumerStats:
        return self._stats

    @property
    def consumer_channel(self) -> ConsumerChannel | None:
        return self._consumer_channel

    async def start(self) -> None:
        """
        Provision the consumer channel and start consuming.

        Raises:
            NotConnectedError: If the manager is not connected
            ChannelCreationError: If the channel could not be provisioned
        """
        if self.is_consuming:
            logger.warning(f"Consumer for {self.queue_name} already started")
            return
        if self._consumer_channel is not None:
            # Channel was closed underneath us; release it before provisioning anew
            await self.stop()

        self._consumer_channel = await self._manager.create_consumer_channel(self._options)
        try:
            self._consumer_tag = await self._consumer_channel.queue.consume(
                self._on_message, no_ack=False
            )
        except Exception:
            await self._manager.remove_consumer_channel(self._consumer_channel)
            self._consumer_channel = None
            raise

        logger.info(
            f"Consuming from {self.queue_name}",
            extra={
                "queue_name": self.queue_name,
                "consumer_tag": self._consumer_tag,
                "event_types": self._registry.event_types,
            },
        )

    async def stop(self) -> None:
        """Cancel the consumer and release its channel. Safe to call twice."""
        if self._consumer_channel is None:
            return

        if self._consumer_tag is not None and not self._consumer_channel.is_closed:
            try:
                await self._consumer_channel.queue.cancel(self._consumer_tag)
            except Exception as e:
                logger.error(
                    f"Failed to cancel consumer on {self.queue_name}: {e}",
                    exc_info=True,
                    extra={"queue_name": self.queue_name, "consumer_tag": self._consumer_tag},
                )
        self._consumer_tag = None

        await self._manager.remove_consumer_channel(self._consumer_channel)
        self._consumer_channel = None

        logger.info(
            f"Stopped consuming from {self.queue_name}",
            extra={"queue_name": self.queue_name, **self._stats.to_dict()},
        )

    async def __aenter__(self) -> EventConsumer:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.stop()

    def _wrap(self, handler: EventHandler) -> EventHandler:
        wrapped = self._wrapped.get(handler)
        if wrapped is None:
            wrapped = with_retry(handler, self._retry_config, tracer=self._tracer)
            self._wrapped[handler] = wrapped
        return wrapped

    async def _on_message(self, message: AbstractIncomingMessage) -> None:
        self._stats.received += 1

        try:
            envelope = EventEnvelope.from_bytes(message.body)
        except EnvelopeDecodeError as e:
            self._stats.rejected += 1
            logger.error(
                f"Rejecting undecodable message on {self.queue_name}: {e}",
                extra={"queue_name": self.queue_name, "message_id": message.message_id},
            )
            await message.reject(requeue=False)
            return

        with self._tracer.span_with_kind(
            "brokerkit.consume",
            SpanKindEnum.CONSUMER,
            {
                ATTR_EVENT_ID: envelope.event_id,
                ATTR_EVENT_TYPE: envelope.event_type,
                ATTR_MESSAGING_SYSTEM: "rabbitmq",
                ATTR_MESSAGING_DESTINATION: self.queue_name,
                ATTR_MESSAGING_OPERATION: "process",
            },
        ):
            try:
                await self._registry.dispatch(envelope, wrap=self._wrap)
            except Exception as e:
                self._stats.failed += 1
                logger.error(
                    f"Event processing failed, nacking (requeue={self._requeue_on_failure}): "
                    f"{envelope.event_type} | ID: {envelope.event_id}",
                    extra={
                        "queue_name": self.queue_name,
                        "event_type": envelope.event_type,
                        "event_id": envelope.event_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                await message.nack(requeue=self._requeue_on_failure)
                return

        self._stats.succeeded += 1
        await message.ack()


__all__ = [
    "ConsumerStats",
    "EventConsumer",
]
