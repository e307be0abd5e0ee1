"""
Handler registry mapping event types to handler coroutines.

The registry is an explicit table built by the application at startup; there
is no decorator scanning or reflection. Both the in-process publisher path
(``EventPublisher.emit_local``) and the broker consumer route through it.

Example:
    >>> registry = HandlerRegistry(unregistered_event_handling="warn")
    >>> registry.register("message.sent", notify_receiver)
    >>> registry.register("message.sent", update_unread_count)
    >>> await registry.dispatch(envelope)
    True
"""

import logging
from collections.abc import Callable
from typing import Literal

from brokerkit.events.envelope import EventEnvelope
from brokerkit.exceptions import UnhandledEventError
from brokerkit.handlers.retry import EventHandler

logger = logging.getLogger(__name__)

# Type alias for unregistered event handling mode
UnregisteredEventHandling = Literal["ignore", "warn", "error"]


class HandlerRegistry:
    """
    Routes event envelopes to the handlers registered for their type.

    Handlers for one event type run sequentially in registration order.
    Registering the same handler twice for a type keeps a single entry.

    Args:
        unregistered_event_handling: What dispatch() does for an event type
            without handlers:
            - "ignore": Silently skip
            - "warn": Log a warning (default)
            - "error": Raise UnhandledEventError
    """

    def __init__(
        self,
        unregistered_event_handling: UnregisteredEventHandling = "warn",
    ) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._unregistered_event_handling = unregistered_event_handling

    def register(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler coroutine for an event type.

        Raises:
            ValueError: If event_type is empty
            TypeError: If handler is not callable
        """
        if not event_type:
            raise ValueError("event_type must be a non-empty string")
        if not callable(handler):
            raise TypeError(f"Handler for {event_type} must be callable, got {handler!r}")

        handlers = self._handlers.setdefault(event_type, [])
        if handler in handlers:
            logger.debug(
                f"Handler already registered for {event_type}: {_handler_name(handler)}",
                extra={"event_type": event_type, "handler": _handler_name(handler)},
            )
            return

        handlers.append(handler)
        logger.debug(
            f"Registered handler for {event_type}: {_handler_name(handler)}",
            extra={"event_type": event_type, "handler": _handler_name(handler)},
        )

    def unregister(self, event_type: str, handler: EventHandler) -> bool:
        """Remove a handler. Returns False if it was not registered."""
        handlers = self._handlers.get(event_type)
        if not handlers or handler not in handlers:
            return False

        handlers.remove(handler)
        if not handlers:
            del self._handlers[event_type]
        return True

    def get_handlers(self, event_type: str) -> list[EventHandler]:
        """Handlers for an event type in registration order (a copy)."""
        return list(self._handlers.get(event_type, ()))

    def has_handlers(self, event_type: str) -> bool:
        return bool(self._handlers.get(event_type))

    @property
    def event_types(self) -> list[str]:
        """Event types that have at least one handler."""
        return list(self._handlers)

    def clear(self) -> None:
        self._handlers.clear()

    def __len__(self) -> int:
        return sum(len(handlers) for handlers in self._handlers.values())

    async def dispatch(
        self,
        envelope: EventEnvelope,
        *,
        wrap: Callable[[EventHandler], EventHandler] | None = None,
    ) -> bool:
        """
        Run every handler registered for the envelope's type.

        Handler exceptions propagate; handlers after the failing one do not run.

        Args:
            envelope: Event to dispatch
            wrap: Optional decorator applied to each handler before it runs
                (the consumer uses it to add retries)

        Returns:
            True if at least one handler ran, False if none is registered

        Raises:
            UnhandledEventError: If unregistered_event_handling="error" and no handler
        """
        handlers = self.get_handlers(envelope.event_type)
        if not handlers:
            self._handle_unregistered_event(envelope)
            return False

        for handler in handlers:
            if wrap is not None:
                handler = wrap(handler)
            await handler(envelope)
        return True

    def _handle_unregistered_event(self, envelope: EventEnvelope) -> None:
        if self._unregistered_event_handling == "error":
            raise UnhandledEventError(envelope.event_type, envelope.event_id)
        elif self._unregistered_event_handling == "warn":
            logger.warning(
                f"No handler registered for event type {envelope.event_type}. "
                f"Registered types: {', '.join(self._handlers) or 'none'}",
                extra={
                    "event_type": envelope.event_type,
                    "event_id": envelope.event_id,
                    "registered_types": list(self._handlers),
                },
            )
        # "ignore" mode: do nothing

    def __repr__(self) -> str:
        return (
            f"HandlerRegistry(event_types={len(self._handlers)}, "
            f"handlers={len(self)}, "
            f"unregistered_event_handling={self._unregistered_event_handling!r})"
        )


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


__all__ = [
    "HandlerRegistry",
    "UnregisteredEventHandling",
]
