"""Event envelope carried by every brokerkit message."""

from brokerkit.events.envelope import EventEnvelope

__all__ = ["EventEnvelope"]
