"""
Retrying wrapper for event handlers.

``with_retry`` takes a business handler and returns a coroutine function with
the same call shape plus an ``attempt`` argument. Each invocation:

1. logs the start (event type and id)
2. runs the handler
3. on success logs completion and returns
4. on failure logs the error with its traceback, then either sleeps
   ``base_delay * exponential_base ** attempt`` seconds and tries again with
   ``attempt + 1``, or, when ``attempt == max_retries``, logs that retries are
   exhausted and re-raises the handler's exception unchanged

With the defaults (``max_retries=3``, ``base_delay=1.0``) a handler runs at
most four times, waiting 1s, 2s and 4s between attempts. The wait suspends
only the task handling this one event.

The wrapper never acknowledges or rejects messages; deciding what happens to
a delivery after exhaustion is the consumer's job.

Example:
    >>> async def notify_receiver(envelope: EventEnvelope) -> None:
    ...     await notifications.create(envelope.data["receiverId"])
    >>>
    >>> handle = with_retry(notify_receiver, RetryConfig(max_retries=3, base_delay=1.0))
    >>> await handle(envelope)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from brokerkit.events.envelope import EventEnvelope
from brokerkit.observability.attributes import (
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_HANDLER_NAME,
    ATTR_RETRY_ATTEMPT,
    ATTR_RETRY_MAX,
)
from brokerkit.observability.tracer import NullTracer, Tracer

logger = logging.getLogger(__name__)

EventHandler = Callable[[EventEnvelope], Awaitable[None]]


class RetryingHandler(Protocol):
    """Call shape of the coroutine function returned by with_retry()."""

    __name__: str

    async def __call__(self, envelope: EventEnvelope, attempt: int = 0) -> None: ...


@dataclass(frozen=True)
class RetryConfig:
    """
    Retry bound and backoff schedule for event handlers.

    Attributes:
        max_retries: Retries after the first attempt (0 = run once)
        base_delay: Delay in seconds before the first retry
        exponential_base: Growth factor between consecutive delays
        max_delay: Optional cap on a single delay in seconds
    """

    max_retries: int = 3
    base_delay: float = 1.0
    exponential_base: float = 2.0
    max_delay: float | None = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(
                f"max_retries must be >= 0, got {self.max_retries}. Use 0 for no retries."
            )

        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}.")

        if self.exponential_base < 1.0:
            raise ValueError(f"exponential_base must be >= 1.0, got {self.exponential_base}.")

        if self.max_delay is not None and self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})."
            )


def calculate_backoff(attempt: int, config: RetryConfig) -> float:
    """
    Delay in seconds to wait after the given (0-based) failed attempt.

    Example:
        >>> config = RetryConfig(base_delay=1.0)
        >>> [calculate_backoff(n, config) for n in range(3)]
        [1.0, 2.0, 4.0]
    """
    delay = config.base_delay * (config.exponential_base**attempt)
    if config.max_delay is not None:
        delay = min(delay, config.max_delay)
    return delay


def with_retry(
    handler: EventHandler,
    config: RetryConfig | None = None,
    *,
    name: str | None = None,
    handler_logger: logging.Logger | None = None,
    tracer: Tracer | None = None,
) -> RetryingHandler:
    """
    Wrap ``handler`` with logging and bounded exponential-backoff retries.

    Args:
        handler: Coroutine function taking an EventEnvelope
        config: Retry settings, RetryConfig() when None
        name: Name used in log records, defaults to the handler's qualified name
        handler_logger: Logger that receives outcome records, defaults to this
            module's logger
        tracer: Tracer for one span per attempt, NullTracer when None

    Returns:
        Coroutine function ``(envelope, attempt=0) -> None``
    """
    retry_config = config or RetryConfig()
    handler_name = name or getattr(handler, "__qualname__", None) or repr(handler)
    log = handler_logger or logger
    span_tracer = tracer or NullTracer()

    async def execute(envelope: EventEnvelope, attempt: int = 0) -> None:
        context = {
            "handler": handler_name,
            "event_id": envelope.event_id,
            "event_type": envelope.event_type,
            "attempt": attempt,
            "max_retries": retry_config.max_retries,
        }
        log.info(
            f"Handling event: {envelope.event_type} | ID: {envelope.event_id}",
            extra=context,
        )

        try:
            with span_tracer.span(
                "brokerkit.handler.execute",
                {
                    ATTR_HANDLER_NAME: handler_name,
                    ATTR_EVENT_ID: envelope.event_id,
                    ATTR_EVENT_TYPE: envelope.event_type,
                    ATTR_RETRY_ATTEMPT: attempt,
                    ATTR_RETRY_MAX: retry_config.max_retries,
                },
            ):
                await handler(envelope)
        except Exception as e:
            log.error(
                f"Event handling failed: {envelope.event_type} | ID: {envelope.event_id} | "
                f"error: {e}",
                exc_info=True,
                extra={**context, "error": str(e), "error_type": type(e).__name__},
            )
            if attempt >= retry_config.max_retries:
                log.error(
                    f"Retries exhausted: {envelope.event_type} | ID: {envelope.event_id}",
                    extra=context,
                )
                raise
        else:
            log.info(
                f"Event handled: {envelope.event_type} | ID: {envelope.event_id}",
                extra=context,
            )
            return

        # Outside the except block so the final error is not chained to earlier ones
        delay = calculate_backoff(attempt, retry_config)
        log.warning(
            f"Retrying ({attempt + 1}/{retry_config.max_retries}) in {delay:.2f}s: "
            f"{envelope.event_type} | ID: {envelope.event_id}",
            extra={**context, "delay_seconds": delay},
        )
        await asyncio.sleep(delay)
        await execute(envelope, attempt + 1)

    execute.__name__ = f"with_retry({handler_name})"
    execute.__qualname__ = execute.__name__
    return execute


__all__ = [
    "EventHandler",
    "RetryConfig",
    "RetryingHandler",
    "calculate_backoff",
    "with_retry",
]
