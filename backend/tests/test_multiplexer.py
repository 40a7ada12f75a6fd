import asyncio

import pytest

from app.services.slots import ChangeFeedMultiplexer, SubscriptionKey

from conftest import FakeChangeFeed

KEY = SubscriptionKey(1, "slot:2025-03-10T03:00:00Z|2025-03-10T04:00:00Z")
OTHER_KEY = SubscriptionKey(1, "rolling:120m")


class Counter:
    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1


async def settle(config, factor=4):
    await asyncio.sleep(config.debounce_seconds * factor)


@pytest.mark.asyncio
async def test_consumers_of_one_key_share_a_connection(feed, config):
    mux = ChangeFeedMultiplexer(feed, config)

    handles = [await mux.register(KEY, 1, Counter()) for _ in range(3)]

    assert mux.connection_count(KEY) == 1
    assert mux.consumer_count(KEY) == 3
    assert len(feed.connections) == 1

    for handle in handles[:-1]:
        await mux.unregister(handle)
    assert mux.connection_count(KEY) == 1

    await mux.unregister(handles[-1])
    assert mux.connection_count() == 0
    assert feed.connections[0].closed


@pytest.mark.asyncio
async def test_concurrent_registrations_open_one_connection(feed, config):
    mux = ChangeFeedMultiplexer(feed, config)

    await asyncio.gather(*(mux.register(KEY, 1, Counter()) for _ in range(10)))

    assert feed.subscribe_calls == 1
    assert mux.consumer_count(KEY) == 10


@pytest.mark.asyncio
async def test_one_event_notifies_each_consumer_once(feed, config):
    mux = ChangeFeedMultiplexer(feed, config)
    first, second = Counter(), Counter()
    await mux.register(KEY, 1, first)
    await mux.register(KEY, 1, second)

    feed.fire(1)
    await settle(config)

    assert (first.calls, second.calls) == (1, 1)


@pytest.mark.asyncio
async def test_burst_of_events_is_coalesced(feed, config):
    mux = ChangeFeedMultiplexer(feed, config)
    counter = Counter()
    await mux.register(KEY, 1, counter)

    for _ in range(5):
        feed.fire(1)
    await settle(config)

    assert counter.calls == 1

    feed.fire(1)
    await settle(config)

    assert counter.calls == 2


@pytest.mark.asyncio
async def test_keys_are_isolated(feed, config):
    mux = ChangeFeedMultiplexer(feed, config)
    slot_counter, rolling_counter = Counter(), Counter()
    await mux.register(KEY, 1, slot_counter)
    await mux.register(OTHER_KEY, 1, rolling_counter)

    assert mux.connection_count() == 2

    mux.notify(KEY)
    await settle(config)

    assert slot_counter.calls == 1
    assert rolling_counter.calls == 0


@pytest.mark.asyncio
async def test_failing_callback_does_not_block_others(feed, config):
    mux = ChangeFeedMultiplexer(feed, config)
    counter = Counter()
    awaited = []

    def broken():
        raise RuntimeError("consumer bug")

    async def async_consumer():
        awaited.append(True)

    await mux.register(KEY, 1, broken)
    await mux.register(KEY, 1, counter)
    await mux.register(KEY, 1, async_consumer)

    feed.fire(1)
    await settle(config)

    assert counter.calls == 1
    assert awaited == [True]


@pytest.mark.asyncio
async def test_unregistered_consumer_is_not_called(feed, config):
    mux = ChangeFeedMultiplexer(feed, config)
    counter = Counter()
    handle = await mux.register(KEY, 1, counter)
    await mux.register(KEY, 1, Counter())

    await mux.unregister(handle)
    await mux.unregister(handle)
    feed.fire(1)
    await settle(config)

    assert counter.calls == 0
    assert mux.consumer_count(KEY) == 1


@pytest.mark.asyncio
async def test_pending_flush_dropped_when_last_consumer_leaves(feed, config):
    mux = ChangeFeedMultiplexer(feed, config)
    counter = Counter()
    handle = await mux.register(KEY, 1, counter)

    feed.fire(1)
    await mux.unregister(handle)
    await settle(config)

    assert counter.calls == 0


@pytest.mark.asyncio
async def test_failed_subscribe_is_retried_in_background(config):
    feed = FakeChangeFeed(fail_times=1)
    mux = ChangeFeedMultiplexer(feed, config)

    await mux.register(KEY, 1, Counter())
    assert mux.connection_count(KEY) == 0
    assert mux.consumer_count(KEY) == 1

    await asyncio.sleep(config.feed_retry_delay_seconds * 20)

    assert mux.connection_count(KEY) == 1
    assert feed.subscribe_calls == 2


@pytest.mark.asyncio
async def test_retry_gives_up_after_configured_attempts(config):
    feed = FakeChangeFeed(fail_times=100)
    mux = ChangeFeedMultiplexer(feed, config)

    await mux.register(KEY, 1, Counter())
    await asyncio.sleep(config.feed_retry_delay_seconds * (config.feed_retry_attempts + 20))

    assert mux.connection_count(KEY) == 0
    assert feed.subscribe_calls == 1 + config.feed_retry_attempts


@pytest.mark.asyncio
async def test_teardown_closes_everything(feed, config):
    mux = ChangeFeedMultiplexer(feed, config)
    await mux.register(KEY, 1, Counter())
    await mux.register(OTHER_KEY, 1, Counter())

    await mux.teardown()

    assert mux.connection_count() == 0
    assert all(c.closed for c in feed.connections)
    with pytest.raises(RuntimeError):
        await mux.register(KEY, 1, Counter())


@pytest.mark.asyncio
async def test_lost_feed_is_resubscribed(feed, config):
    mux = ChangeFeedMultiplexer(feed, config)
    counter = Counter()
    await mux.register(KEY, 1, counter)

    feed.drop(1)
    await asyncio.sleep(config.feed_retry_delay_seconds * 20)

    assert feed.subscribe_calls == 2
    assert feed.connections[0].closed
    assert mux.connection_count(KEY) == 1
    # consumers re-query once after reconnecting
    assert counter.calls == 1

    feed.fire(1)
    await settle(config)

    assert counter.calls == 2


@pytest.mark.asyncio
async def test_lost_feed_after_last_consumer_left_is_not_reopened(feed, config):
    mux = ChangeFeedMultiplexer(feed, config)
    handle = await mux.register(KEY, 1, Counter())
    lost = feed.connections[0].on_lost

    await mux.unregister(handle)
    lost()
    await asyncio.sleep(config.feed_retry_delay_seconds * 20)

    assert feed.subscribe_calls == 1
    assert mux.connection_count() == 0
