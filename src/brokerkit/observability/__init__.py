"""
Observability utilities for brokerkit.

Tracing is composition based: components take an optional ``Tracer`` and
fall back to ``create_tracer(__name__, enable_tracing)``. OpenTelemetry is an
optional dependency (``pip install brokerkit[telemetry]``); without it every
tracer is a ``NullTracer``.
"""

from brokerkit.observability.attributes import (
    ATTR_ERROR_TYPE,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_HANDLER_NAME,
    ATTR_HANDLER_SUCCESS,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_ROUTING_KEY,
    ATTR_MESSAGING_SYSTEM,
    ATTR_RETRY_ATTEMPT,
    ATTR_RETRY_MAX,
)
from brokerkit.observability.tracer import (
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)

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
    "MockTracer",
    "NullTracer",
    "OTEL_AVAILABLE",
    "OpenTelemetryTracer",
    "SpanKindEnum",
    "Tracer",
    "create_tracer",
]
