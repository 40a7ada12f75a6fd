import asyncio

import pytest

from app.services.slots import ChangeFeedMultiplexer, FeedUnavailableError, RedisChangeFeed, SubscriptionKey


class FakePubSub:
    def __init__(self, fail=False, dies=False):
        self.fail = fail
        self.dies = dies
        self.channels = set()
        self.queue = asyncio.Queue()
        self.closed = False

    async def subscribe(self, channel):
        if self.fail:
            raise ConnectionError("redis down")
        self.channels.add(channel)

    async def unsubscribe(self, channel):
        self.channels.discard(channel)

    async def aclose(self):
        self.closed = True

    async def listen(self):
        if self.dies:
            raise ConnectionError("connection reset by peer")
        while True:
            yield await self.queue.get()


class FakeAsyncRedis:
    def __init__(self, fail=False, dying=0):
        self.fail = fail
        self.dying = dying
        self.pubsubs = []

    def pubsub(self, ignore_subscribe_messages=False):
        pubsub = FakePubSub(self.fail, dies=len(self.pubsubs) < self.dying)
        self.pubsubs.append(pubsub)
        return pubsub


@pytest.mark.asyncio
async def test_messages_on_spot_channel_trigger_callback():
    redis = FakeAsyncRedis()
    events = []
    connection = await RedisChangeFeed(redis).subscribe(5, lambda: events.append("changed"))
    pubsub = redis.pubsubs[0]

    assert pubsub.channels == {"bookings:spot:5"}

    await pubsub.queue.put({"type": "subscribe", "data": 1})
    await pubsub.queue.put({"type": "message", "data": '{"spot_id": 5}'})
    await asyncio.sleep(0.01)

    assert events == ["changed"]

    await connection.close()
    assert pubsub.closed
    assert pubsub.channels == set()


@pytest.mark.asyncio
async def test_subscribe_failure_raises_feed_unavailable():
    redis = FakeAsyncRedis(fail=True)

    with pytest.raises(FeedUnavailableError):
        await RedisChangeFeed(redis).subscribe(5, lambda: None)

    assert redis.pubsubs[0].closed


@pytest.mark.asyncio
async def test_dead_listener_reports_loss():
    redis = FakeAsyncRedis(dying=1)
    lost = []

    await RedisChangeFeed(redis).subscribe(5, lambda: None, on_lost=lambda: lost.append(5))
    await asyncio.sleep(0.01)

    assert lost == [5]


@pytest.mark.asyncio
async def test_multiplexer_recovers_from_dead_listener(config):
    redis = FakeAsyncRedis(dying=1)
    mux = ChangeFeedMultiplexer(RedisChangeFeed(redis), config)
    key = SubscriptionKey(5, "rolling:120m")

    await mux.register(key, 5, lambda: None)
    await asyncio.sleep(config.feed_retry_delay_seconds * 20)

    assert len(redis.pubsubs) == 2
    assert redis.pubsubs[0].closed
    assert not redis.pubsubs[1].closed
    assert mux.connection_count(key) == 1

    await mux.teardown()
    assert redis.pubsubs[1].closed
