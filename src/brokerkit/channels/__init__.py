"""
Channel management for brokerkit.

- PublisherChannelPool: elastic borrow/return pool of publisher channels
- ConsumerChannel: a dedicated channel with its exchange, queue and binding
- ConsumerChannelOptions: what a consumer channel provisions for itself
"""

from brokerkit.channels.consumer import ConsumerChannel, provision_consumer_channel
from brokerkit.channels.options import (
    ConsumerChannelOptions,
    ExchangeKind,
    ExchangeOptions,
    QueueOptions,
)
from brokerkit.channels.pool import ChannelFactory, PoolStats, PublisherChannelPool

__all__ = [
    "ChannelFactory",
    "ConsumerChannel",
    "ConsumerChannelOptions",
    "ExchangeKind",
    "ExchangeOptions",
    "PoolStats",
    "PublisherChannelPool",
    "QueueOptions",
    "provision_consumer_channel",
]
