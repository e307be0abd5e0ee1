"""Library exceptions for the brokerkit package."""


class BrokerError(Exception):
    """Base exception for brokerkit."""

    pass


class NotConnectedError(BrokerError):
    """Raised when an operation needs a broker connection that is not open."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Cannot {operation}: not connected to RabbitMQ (call connect() first)")


class ChannelCreationError(BrokerError):
    """
    Raised when a channel cannot be opened or provisioned.

    The underlying broker or transport error is always chained as
    ``__cause__`` so callers can inspect it.

    Attributes:
        purpose: What the channel was for ("publisher" or "consumer")
        queue_name: Queue being provisioned, for consumer channels
    """

    def __init__(self, purpose: str, message: str, queue_name: str | None = None) -> None:
        self.purpose = purpose
        self.queue_name = queue_name
        target = f" for queue {queue_name}" if queue_name else ""
        super().__init__(f"Failed to create {purpose} channel{target}: {message}")


class UnhandledEventError(BrokerError):
    """
    Raised when an event has no registered handler and the registry is strict.

    Attributes:
        event_type: The routing key / event type that had no handler
        event_id: ID of the offending envelope
    """

    def __init__(self, event_type: str, event_id: str) -> None:
        self.event_type = event_type
        self.event_id = event_id
        super().__init__(
            f"No handler registered for event type {event_type} (event_id: {event_id})"
        )


class EnvelopeDecodeError(BrokerError):
    """Raised when a message body cannot be decoded into an event envelope."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Invalid event envelope: {message}")


__all__ = [
    "BrokerError",
    "ChannelCreationError",
    "EnvelopeDecodeError",
    "NotConnectedError",
    "UnhandledEventError",
]
