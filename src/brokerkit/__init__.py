"""
brokerkit - RabbitMQ connection and channel lifecycle management.

Provides a single robust connection per process, an elastic publisher channel
pool, self-provisioning consumer channels and a retrying wrapper for event
handlers.

Example:
    >>> from brokerkit import (
    ...     BrokerSettings,
    ...     ConnectionManager,
    ...     ConsumerChannelOptions,
    ...     EventConsumer,
    ...     EventEnvelope,
    ...     EventPublisher,
    ...     HandlerRegistry,
    ... )
    >>>
    >>> registry = HandlerRegistry()
    >>> registry.register("order.paid", send_receipt)
    >>>
    >>> async with ConnectionManager(BrokerSettings()) as manager:
    ...     consumer = EventConsumer(
    ...         manager,
    ...         ConsumerChannelOptions(
    ...             queue_name="secondhand.order.receipts", routing_key="order.*"
    ...         ),
    ...         registry,
    ...     )
    ...     await consumer.start()
    ...     await EventPublisher(manager).publish(EventEnvelope(event_type="order.paid"))
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("brokerkit")
except PackageNotFoundError:
    # Package not installed (running from source without pip install -e)
    __version__ = "0.0.0.dev0"

from brokerkit.channels import (
    ConsumerChannel,
    ConsumerChannelOptions,
    ExchangeOptions,
    PoolStats,
    PublisherChannelPool,
    QueueOptions,
)
from brokerkit.config import BrokerSettings
from brokerkit.connection import ConnectionManager, ConnectionState
from brokerkit.consumer import ConsumerStats, EventConsumer
from brokerkit.events import EventEnvelope
from brokerkit.exceptions import (
    BrokerError,
    ChannelCreationError,
    EnvelopeDecodeError,
    NotConnectedError,
    UnhandledEventError,
)
from brokerkit.handlers import (
    EventHandler,
    HandlerRegistry,
    RetryConfig,
    calculate_backoff,
    with_retry,
)
from brokerkit.publisher import EventPublisher, PublishOptions
from brokerkit.topology import ExchangeNames, bootstrap_topology, queue_name, routing_key

__all__ = [
    "__version__",
    # Settings and connection
    "BrokerSettings",
    "ConnectionManager",
    "ConnectionState",
    # Channels
    "ConsumerChannel",
    "ConsumerChannelOptions",
    "ExchangeOptions",
    "PoolStats",
    "PublisherChannelPool",
    "QueueOptions",
    # Topology
    "ExchangeNames",
    "bootstrap_topology",
    "queue_name",
    "routing_key",
    # Events and handlers
    "EventEnvelope",
    "EventHandler",
    "HandlerRegistry",
    "RetryConfig",
    "calculate_backoff",
    "with_retry",
    # Publish / consume
    "ConsumerStats",
    "EventConsumer",
    "EventPublisher",
    "PublishOptions",
    # Exceptions
    "BrokerError",
    "ChannelCreationError",
    "EnvelopeDecodeError",
    "NotConnectedError",
    "UnhandledEventError",
]
