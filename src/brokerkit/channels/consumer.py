"""
Consumer channel provisioning.

A consumer channel is dedicated to one consumer for its whole life. Before it
is handed out it declares its own topology, in this order:

1. the exchange (idempotent assert)
2. the queue, with ``x-`` arguments for the options that were set
3. the binding, only when a routing key was given
4. the prefetch limit

Robust channels record the exchanges, queues and bindings declared through
them and re-declare them after a reconnect.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractQueue

from brokerkit.channels.options import ConsumerChannelOptions

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class ConsumerChannel:
    """
    A provisioned consumer channel and the topology bound to it.

    Instances compare and hash by identity, so they can be tracked in sets.

    Attributes:
        channel: The underlying channel
        options: Options the channel was provisioned with
        exchange: The declared exchange
        queue: The declared queue
    """

    channel: AbstractChannel
    options: ConsumerChannelOptions
    exchange: AbstractExchange
    queue: AbstractQueue

    @property
    def queue_name(self) -> str:
        return self.options.queue_name

    @property
    def is_closed(self) -> bool:
        return self.channel.is_closed

    async def close(self) -> None:
        await self.channel.close()


async def provision_consumer_channel(
    channel: AbstractChannel,
    options: ConsumerChannelOptions,
    default_exchange: str,
) -> ConsumerChannel:
    """
    Declare a consumer's exchange, queue, binding and prefetch on ``channel``.

    Args:
        channel: Freshly opened channel
        options: What to provision
        default_exchange: Exchange used when ``options.exchange_name`` is None

    Returns:
        The provisioned ConsumerChannel
    """
    exchange_name = options.exchange_name or default_exchange
    exchange_options = options.exchange_options
    queue_options = options.queue_options

    exchange = await channel.declare_exchange(
        exchange_name,
        type=options.aio_pika_exchange_type,
        durable=exchange_options.durable,
        auto_delete=exchange_options.auto_delete,
        internal=exchange_options.internal,
    )
    logger.info(
        f"Exchange ready: {exchange_name} ({options.exchange_type})",
        extra={"exchange_name": exchange_name, "exchange_type": options.exchange_type},
    )

    arguments = queue_options.arguments()
    queue = await channel.declare_queue(
        options.queue_name,
        durable=queue_options.durable,
        exclusive=queue_options.exclusive,
        auto_delete=queue_options.auto_delete,
        arguments=arguments or None,
    )
    logger.info(
        f"Queue ready: {options.queue_name}",
        extra={"queue_name": options.queue_name, "arguments": arguments},
    )

    # An empty string is a valid binding key (fanout, direct default)
    if options.routing_key is not None:
        await queue.bind(exchange, routing_key=options.routing_key)
        logger.info(
            f"Bound {options.queue_name} <- {exchange_name} [{options.routing_key}]",
            extra={
                "queue_name": options.queue_name,
                "exchange_name": exchange_name,
                "routing_key": options.routing_key,
            },
        )

    await channel.set_qos(prefetch_count=options.prefetch_count)
    logger.info(
        f"Consumer channel provisioned (prefetch: {options.prefetch_count})",
        extra={"queue_name": options.queue_name, "prefetch_count": options.prefetch_count},
    )

    return ConsumerChannel(channel=channel, options=options, exchange=exchange, queue=queue)


__all__ = [
    "ConsumerChannel",
    "provision_consumer_channel",
]
