"""
Publisher channel pool.

Publisher channels carry no topology: they only publish to exchanges that
already exist. The pool hands them out with borrow/return semantics and never
makes a borrower wait. When every channel is borrowed, a new one is opened,
appended to the pool and handed out, so the pool grows under contention and
only shrinks when it is closed.

Borrow and release run on a single event loop. Finding a free channel and
marking it in use happen without an ``await`` in between, so two concurrent
borrowers can never receive the same channel. The only suspension point in
``acquire`` is opening a brand new channel, which is marked in use in the same
step it joins the pool. If the pool is closed while that channel is
opening, the channel is closed instead of joining.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass

from aio_pika.abc import AbstractChannel

from brokerkit.channels._closing import close_quietly
from brokerkit.exceptions import ChannelCreationError, NotConnectedError

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[], Awaitable[AbstractChannel]]


@dataclass(frozen=True)
class PoolStats:
    """Point-in-time view of the publisher pool."""

    total: int
    in_use: int

    @property
    def available(self) -> int:
        return self.total - self.in_use

    def to_dict(self) -> dict[str, int]:
        return {"total": self.total, "inUse": self.in_use, "available": self.available}


class PublisherChannelPool:
    """
    Elastic pool of publisher channels.

    Example:
        >>> pool = PublisherChannelPool(connection.channel, size=5)
        >>> await pool.fill()
        >>> async with pool.channel() as channel:
        ...     await channel.default_exchange.publish(message, routing_key="jobs")
    """

    def __init__(self, channel_factory: ChannelFactory, size: int = 5) -> None:
        """
        Initialize an empty pool.

        Args:
            channel_factory: Coroutine function returning a newly opened channel
            size: Number of channels opened by fill()
        """
        if size < 1:
            raise ValueError(f"size must be >= 1, got {size}")
        self._channel_factory = channel_factory
        self._size = size
        self._channels: list[AbstractChannel] = []
        self._in_use: set[AbstractChannel] = set()
        # Bumped by close(); an open that straddles a close belongs to no pool
        self._generation = 0

    @property
    def size(self) -> int:
        """Configured size (channels opened by fill())."""
        return self._size

    @property
    def channels(self) -> tuple[AbstractChannel, ...]:
        return tuple(self._channels)

    @property
    def in_use(self) -> frozenset[AbstractChannel]:
        return frozenset(self._in_use)

    def __len__(self) -> int:
        return len(self._channels)

    def stats(self) -> PoolStats:
        return PoolStats(total=len(self._channels), in_use=len(self._in_use))

    async def _open(self) -> AbstractChannel:
        try:
            return await self._channel_factory()
        except Exception as e:
            logger.error(
                f"Failed to open publisher channel: {e}",
                exc_info=True,
                extra={"pool_size": len(self._channels), "error_type": type(e).__name__},
            )
            raise ChannelCreationError("publisher", str(e)) from e

    async def fill(self) -> None:
        """Open channels until the pool holds its configured size."""
        logger.info(f"Creating publisher channel pool (size: {self._size})")
        generation = self._generation
        while len(self._channels) < self._size:
            channel = await self._open()
            if generation != self._generation:
                await self._discard_stale(channel)
                raise NotConnectedError("fill the publisher pool")
            self._channels.append(channel)
            logger.debug(f"Publisher channel #{len(self._channels)} created")

    async def acquire(self) -> AbstractChannel:
        """
        Borrow a channel.

        Returns a free channel when there is one. Otherwise opens a new
        channel, adds it to the pool and returns it. Never blocks waiting for
        a release and never refuses a borrower.

        Raises:
            ChannelCreationError: If the pool had to grow and the new channel
                could not be opened
            NotConnectedError: If the pool was closed while the new channel
                was being opened
        """
        for channel in self._channels:
            if channel not in self._in_use:
                self._in_use.add(channel)
                logger.debug(
                    "Publisher channel acquired",
                    extra={"in_use": len(self._in_use), "pool_size": len(self._channels)},
                )
                return channel

        logger.warning(
            f"All publisher channels in use, growing pool (current size: {len(self._channels)})",
            extra={"pool_size": len(self._channels), "configured_size": self._size},
        )
        generation = self._generation
        channel = await self._open()
        if generation != self._generation:
            await self._discard_stale(channel)
            raise NotConnectedError("acquire a publisher channel")
        self._channels.append(channel)
        self._in_use.add(channel)
        return channel

    async def _discard_stale(self, channel: AbstractChannel) -> None:
        logger.warning(
            "Publisher pool closed while a channel was opening, closing it",
            extra={"pool_size": len(self._channels)},
        )
        await close_quietly(channel, "publisher")

    def release(self, channel: AbstractChannel) -> None:
        """
        Return a borrowed channel to the pool.

        Releasing a channel that is not borrowed (already released, or never
        part of this pool) is logged and otherwise ignored.
        """
        if channel not in self._in_use:
            logger.warning("Released publisher channel is not in use; ignoring")
            return

        self._in_use.discard(channel)
        logger.debug(
            "Publisher channel released",
            extra={"in_use": len(self._in_use), "pool_size": len(self._channels)},
        )

    @contextlib.asynccontextmanager
    async def channel(self) -> AsyncIterator[AbstractChannel]:
        """Borrow a channel for the duration of the ``async with`` block."""
        channel = await self.acquire()
        try:
            yield channel
        finally:
            self.release(channel)

    async def close(self) -> None:
        """
        Close every channel and forget them.

        Close failures are logged; one broken channel does not stop the others
        from closing. Waits for all close attempts before returning.
        """
        self._generation += 1
        channels = list(self._channels)
        logger.info(f"Closing publisher channels ({len(channels)})")

        await asyncio.gather(*(close_quietly(channel, "publisher") for channel in channels))

        self._channels.clear()
        self._in_use.clear()
        logger.info("All publisher channels closed")


__all__ = [
    "ChannelFactory",
    "PoolStats",
    "PublisherChannelPool",
]
