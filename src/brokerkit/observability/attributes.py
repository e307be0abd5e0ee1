"""
Standard span attributes for brokerkit.

Messaging attributes follow the OpenTelemetry semantic conventions; the rest
use the ``brokerkit.`` namespace.

Example:
    >>> from brokerkit.observability.attributes import ATTR_EVENT_TYPE, ATTR_RETRY_ATTEMPT
    >>>
    >>> with tracer.span(
    ...     "brokerkit.handler.execute",
    ...     {ATTR_EVENT_TYPE: envelope.event_type, ATTR_RETRY_ATTEMPT: 0},
    ... ):
    ...     pass
"""

# =============================================================================
# Event Attributes
# =============================================================================

ATTR_EVENT_ID = "brokerkit.event.id"
"""Unique identifier of the event envelope."""

ATTR_EVENT_TYPE = "brokerkit.event.type"
"""Event type, which is also the routing key (e.g. 'order.paid')."""

# =============================================================================
# Handler Attributes
# =============================================================================

ATTR_HANDLER_NAME = "brokerkit.handler.name"
"""Name of the handler function being executed."""

ATTR_HANDLER_SUCCESS = "brokerkit.handler.success"
"""Whether the handler attempt succeeded (boolean)."""

ATTR_RETRY_ATTEMPT = "brokerkit.retry.attempt"
"""Zero-based attempt number of a handler execution."""

ATTR_RETRY_MAX = "brokerkit.retry.max"
"""Configured maximum number of retries."""

ATTR_ERROR_TYPE = "brokerkit.error.type"
"""Exception class name of a failed attempt."""

# =============================================================================
# Messaging Attributes (OTEL semantic conventions)
# =============================================================================

ATTR_MESSAGING_SYSTEM = "messaging.system"
"""Messaging system identifier, always 'rabbitmq'."""

ATTR_MESSAGING_DESTINATION = "messaging.destination.name"
"""Exchange published to or queue consumed from."""

ATTR_MESSAGING_ROUTING_KEY = "messaging.rabbitmq.destination.routing_key"
"""Routing key of the message."""

ATTR_MESSAGING_OPERATION = "messaging.operation"
"""Operation type: 'publish' or 'process'."""

__all__ = [
    "ATTR_ERROR_TYPE",
    "ATTR_EVENT_ID",
    "ATTR_EVENT_TYPE",
    "ATTR_HANDLER_NAME",
    "ATTR_HANDLER_SUCCESS",
    "ATTR_MESSAGING_DESTINATION",
    "ATTR_MESSAGING_OPERATION",
    "ATTR_MESSAGING_ROUTING_KEY",
    "ATTR_MESSAGING_SYSTEM",
    "ATTR_RETRY_ATTEMPT",
    "ATTR_RETRY_MAX",
]
