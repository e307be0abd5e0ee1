"""
Event handler utilities.

- ``with_retry``: wraps a handler with logging and exponential-backoff retries
- ``HandlerRegistry``: explicit event type to handler table
"""

from brokerkit.handlers.registry import HandlerRegistry, UnregisteredEventHandling
from brokerkit.handlers.retry import (
    EventHandler,
    RetryConfig,
    RetryingHandler,
    calculate_backoff,
    with_retry,
)

__all__ = [
    "EventHandler",
    "HandlerRegistry",
    "RetryConfig",
    "RetryingHandler",
    "UnregisteredEventHandling",
    "calculate_backoff",
    "with_retry",
]
