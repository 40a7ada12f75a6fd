# backend/app/services/slots/feed.py
"""
Change feed: push notifications that bookings of a spot changed.

Channel: bookings:spot:{spot_id}
Any message on the channel means "re-query"; the payload is informational.

One RedisChangeFeed.subscribe() call = one pub/sub connection with its
own listener task. The multiplexer makes sure there is at most one per
subscription key.
"""

import asyncio
import logging
from typing import Callable, Optional, Protocol

import redis.asyncio as aioredis
from redis.asyncio.client import PubSub

from .errors import FeedUnavailableError

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "bookings:spot"


def spot_channel(spot_id: int) -> str:
    return f"{CHANNEL_PREFIX}:{spot_id}"


class FeedConnection(Protocol):
    async def close(self) -> None: ...


class ChangeFeed(Protocol):
    async def subscribe(
        self,
        spot_id: int,
        on_change: Callable[[], None],
        on_lost: Optional[Callable[[], None]] = None,
    ) -> FeedConnection: ...


class RedisFeedConnection:
    def __init__(self, pubsub: PubSub, listener: asyncio.Task, channel: str):
        self.pubsub = pubsub
        self.listener = listener
        self.channel = channel
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.listener.cancel()
        try:
            await self.listener
        except asyncio.CancelledError:
            pass
        try:
            await self.pubsub.unsubscribe(self.channel)
        finally:
            await self.pubsub.aclose()
        logger.info(f"Change feed closed: {self.channel}")


class RedisChangeFeed:
    """ChangeFeed over Redis pub/sub."""

    def __init__(self, redis: aioredis.Redis):
        self.redis = redis

    async def subscribe(
        self,
        spot_id: int,
        on_change: Callable[[], None],
        on_lost: Optional[Callable[[], None]] = None,
    ) -> RedisFeedConnection:
        """on_lost is called once if the listener dies (not on close())."""
        channel = spot_channel(spot_id)
        pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
        try:
            await pubsub.subscribe(channel)
        except Exception as e:
            await pubsub.aclose()
            raise FeedUnavailableError(f"cannot subscribe to {channel}: {e}") from e

        listener = asyncio.create_task(_listen(pubsub, channel, on_change, on_lost))
        logger.info(f"Change feed opened: {channel}")
        return RedisFeedConnection(pubsub, listener, channel)


async def _listen(
    pubsub: PubSub,
    channel: str,
    on_change: Callable[[], None],
    on_lost: Optional[Callable[[], None]] = None,
) -> None:
    """Forward every message on the channel to on_change."""
    try:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            logger.debug(f"Booking change on {channel}: {message.get('data')}")
            try:
                on_change()
            except Exception:
                logger.exception(f"Change handler failed for {channel}")
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception(f"Change feed listener stopped: {channel}")
        if on_lost is not None:
            on_lost()
