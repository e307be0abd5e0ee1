"""Best-effort channel closing used by teardown paths."""

from __future__ import annotations

import logging

from aio_pika.abc import AbstractChannel

logger = logging.getLogger(__name__)


async def close_quietly(channel: AbstractChannel, kind: str) -> bool:
    """Close a channel, logging instead of raising. Returns True on success."""
    try:
        await channel.close()
    except Exception as e:
        logger.error(
            f"Failed to close {kind} channel: {e}",
            exc_info=True,
            extra={"channel_kind": kind, "error_type": type(e).__name__},
        )
        return False
    return True
