"""
Event envelope.

The envelope is the only structure brokerkit knows about a message: an id,
a type (which doubles as the routing key), a timestamp, an optional actor and
an opaque payload. What the payload means is up to the services that publish
and handle it.

On the wire the envelope is JSON with camelCase keys::

    {
      "eventId": "0c5e...",
      "eventType": "order.paid",
      "timestamp": "2025-01-01T12:00:00Z",
      "userId": 42,
      "data": {"orderId": 7},
      "metadata": {}
    }
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Self
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from brokerkit.exceptions import EnvelopeDecodeError


class EventEnvelope(BaseModel):
    """
    Immutable event envelope.

    Attributes:
        event_id: Unique identifier, generated when not supplied
        event_type: ``{domain}.{action}`` string, also used as routing key
        timestamp: When the event happened (UTC), defaults to now
        user_id: Actor that caused the event, if any
        data: Event payload
        metadata: Free-form metadata (correlation ids, source service, ...)

    Example:
        >>> envelope = EventEnvelope(event_type="message.sent", data={"chatRoomId": "r1"})
        >>> EventEnvelope.from_bytes(envelope.to_bytes()) == envelope
        True
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    event_id: str = Field(default_factory=lambda: str(uuid4()), min_length=1)
    event_type: str = Field(min_length=1)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    user_id: int | str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def to_bytes(self) -> bytes:
        """Serialize to camelCase JSON."""
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_bytes(cls, body: bytes | str) -> Self:
        """
        Decode a JSON message body.

        Raises:
            EnvelopeDecodeError: If the body is not JSON or misses required fields
        """
        try:
            return cls.model_validate_json(body)
        except ValidationError as e:
            raise EnvelopeDecodeError(str(e)) from e

    def __str__(self) -> str:
        return f"{self.event_type} (id={self.event_id})"


__all__ = ["EventEnvelope"]
