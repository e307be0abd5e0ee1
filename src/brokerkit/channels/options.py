"""
Consumer channel options.

Options are immutable value objects. Field names are snake_case in Python and
accept camelCase aliases, so configuration written for other services
(``{"queueName": ..., "queueOptions": {"deadLetterExchange": ...}}``) can be
validated directly with ``ConsumerChannelOptions.model_validate``.

Example:
    >>> options = ConsumerChannelOptions(
    ...     queue_name="secondhand.users.process",
    ...     routing_key="user.*",
    ...     prefetch_count=5,
    ...     queue_options=QueueOptions(
    ...         dead_letter_exchange="secondhand.dlx",
    ...         dead_letter_routing_key="users.failed",
    ...     ),
    ... )
    >>> options.queue_options.arguments()
    {'x-dead-letter-exchange': 'secondhand.dlx', 'x-dead-letter-routing-key': 'users.failed'}
"""

from __future__ import annotations

from typing import Any, Literal

from aio_pika import ExchangeType
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ExchangeKind = Literal["topic", "direct", "fanout", "headers"]

_OPTIONS_CONFIG = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
    extra="forbid",
)


class ExchangeOptions(BaseModel):
    """Declaration flags for a consumer's exchange."""

    model_config = _OPTIONS_CONFIG

    durable: bool = True
    auto_delete: bool = False
    internal: bool = False


class QueueOptions(BaseModel):
    """
    Declaration flags and optional arguments for a consumer's queue.

    Attributes:
        durable: Queue survives broker restarts
        exclusive: Queue is used by this connection only and deleted with it
        auto_delete: Queue is deleted when its last consumer goes away
        max_priority: Enables priority queueing up to this priority
        dead_letter_exchange: Exchange that receives rejected or expired messages
        dead_letter_routing_key: Routing key used when dead-lettering
        message_ttl: Per-queue message time-to-live in milliseconds
        max_length: Maximum number of ready messages kept in the queue
    """

    model_config = _OPTIONS_CONFIG

    durable: bool = True
    exclusive: bool = False
    auto_delete: bool = False
    max_priority: int | None = Field(default=None, ge=1, le=255)
    dead_letter_exchange: str | None = None
    dead_letter_routing_key: str | None = None
    message_ttl: int | None = Field(default=None, ge=0)
    max_length: int | None = Field(default=None, ge=0)

    def arguments(self) -> dict[str, Any]:
        """
        Build the ``x-`` argument table for queue declaration.

        Only options that were set are included, so two declarations of the
        same queue with the same options always send identical arguments.
        """
        candidates = {
            "x-dead-letter-exchange": self.dead_letter_exchange,
            "x-dead-letter-routing-key": self.dead_letter_routing_key,
            "x-message-ttl": self.message_ttl,
            "x-max-length": self.max_length,
            "x-max-priority": self.max_priority,
        }
        return {key: value for key, value in candidates.items() if value is not None}


class ConsumerChannelOptions(BaseModel):
    """
    Everything a consumer channel provisions for itself.

    Attributes:
        queue_name: Queue to declare and consume from (required)
        exchange_name: Exchange to declare and bind to. ``None`` means the
            application's events exchange.
        exchange_type: Exchange type, ``topic`` by default
        exchange_options: Exchange declaration flags
        routing_key: Binding key. ``None`` means the queue is not bound.
        queue_options: Queue declaration flags and arguments
        prefetch_count: Maximum unacknowledged deliveries on the channel.
            The default of 1 keeps one message in flight per consumer.
    """

    model_config = _OPTIONS_CONFIG

    queue_name: str = Field(min_length=1)
    exchange_name: str | None = None
    exchange_type: ExchangeKind = "topic"
    exchange_options: ExchangeOptions = Field(default_factory=ExchangeOptions)
    routing_key: str | None = None
    queue_options: QueueOptions = Field(default_factory=QueueOptions)
    prefetch_count: int = Field(default=1, ge=0)

    @property
    def aio_pika_exchange_type(self) -> ExchangeType:
        return ExchangeType(self.exchange_type)


__all__ = [
    "ConsumerChannelOptions",
    "ExchangeKind",
    "ExchangeOptions",
    "QueueOptions",
]
