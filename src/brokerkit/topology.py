"""
Well-known exchanges and naming conventions.

Every service built on brokerkit shares three durable exchanges:

- ``{application}.events`` (topic): fan-out publish/subscribe of domain events
- ``{application}.commands`` (direct): targeted dispatch to a single queue
- ``{application}.dlx`` (topic): dead-letter exchange for rejected or expired
  messages

Queues follow ``{application}.{domain}.{purpose}`` and routing keys follow
``{domain}.{action}`` (e.g. ``message.sent``, ``order.paid``).

The bootstrapper declares the exchanges with passive=False "assert" semantics:
declaring an exchange that already exists with the same parameters succeeds,
declaring one with conflicting parameters fails with a channel error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from aio_pika import ExchangeType

from brokerkit.channels._closing import close_quietly

if TYPE_CHECKING:
    from aio_pika.abc import AbstractChannel, AbstractRobustConnection

logger = logging.getLogger(__name__)


def _check_segments(**segments: str) -> None:
    for name, value in segments.items():
        if not value or not value.strip():
            raise ValueError(f"{name} must be a non-empty string")


def queue_name(application: str, domain: str, purpose: str) -> str:
    """
    Build a queue name following ``{application}.{domain}.{purpose}``.

    Example:
        >>> queue_name("secondhand", "chat", "incoming")
        'secondhand.chat.incoming'
    """
    _check_segments(application=application, domain=domain, purpose=purpose)
    return f"{application}.{domain}.{purpose}"


def routing_key(domain: str, action: str) -> str:
    """
    Build a routing key following ``{domain}.{action}``.

    Example:
        >>> routing_key("order", "paid")
        'order.paid'
    """
    _check_segments(domain=domain, action=action)
    return f"{domain}.{action}"


@dataclass(frozen=True)
class ExchangeSpec:
    """Declaration parameters for one exchange."""

    name: str
    type: ExchangeType
    durable: bool = True


@dataclass(frozen=True)
class ExchangeNames:
    """Names of the well-known exchanges for one application."""

    events: str
    commands: str
    dlx: str

    @classmethod
    def for_application(cls, application: str) -> ExchangeNames:
        _check_segments(application=application)
        return cls(
            events=f"{application}.events",
            commands=f"{application}.commands",
            dlx=f"{application}.dlx",
        )

    def specs(self) -> tuple[ExchangeSpec, ...]:
        """Exchange declarations in bootstrap order."""
        return (
            ExchangeSpec(self.events, ExchangeType.TOPIC),
            ExchangeSpec(self.commands, ExchangeType.DIRECT),
            ExchangeSpec(self.dlx, ExchangeType.TOPIC),
        )


async def declare_exchanges(channel: AbstractChannel, names: ExchangeNames) -> None:
    """Declare the well-known exchanges on an already open channel."""
    for spec in names.specs():
        await channel.declare_exchange(spec.name, type=spec.type, durable=spec.durable)
        logger.debug(
            f"Declared exchange: {spec.name}",
            extra={"exchange_name": spec.name, "exchange_type": spec.type.value},
        )


async def bootstrap_topology(connection: AbstractRobustConnection, names: ExchangeNames) -> None:
    """
    Declare the well-known exchanges on a transient channel.

    The channel is opened only for the declarations and is closed before
    returning, whether the declarations succeeded or not. A failure to close
    it is logged and does not fail the bootstrap. Safe to call on
    every startup.

    Args:
        connection: Open broker connection
        names: Exchange names to declare

    Raises:
        Exception: Whatever the broker raised for a conflicting declaration
    """
    logger.info("Declaring common exchanges", extra={"exchanges": [s.name for s in names.specs()]})

    channel = await connection.channel()
    try:
        await declare_exchanges(channel, names)
    finally:
        await close_quietly(channel, "topology")

    logger.info(
        "Common exchanges ready",
        extra={"events": names.events, "commands": names.commands, "dlx": names.dlx},
    )


__all__ = [
    "ExchangeNames",
    "ExchangeSpec",
    "bootstrap_topology",
    "declare_exchanges",
    "queue_name",
    "routing_key",
]
