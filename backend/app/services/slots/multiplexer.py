# backend/app/services/slots/multiplexer.py
"""
Change feed multiplexer.

Many consumers watch the same (spot, window) key; they share one change
feed connection per key:

  register(key)   → first consumer opens the connection, others join
  feed event      → one debounced flush calls every consumer once
  unregister(key) → last consumer closes the connection
  feed lost       → connection dropped, re-subscribed in the background

Invariant: per key there are 0 or 1 live connections.

Runs on one asyncio event loop. Map mutations go through an asyncio.Lock
because opening/closing a connection awaits.

Created by the application lifespan and torn down on shutdown.
"""

import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from .config import AvailabilityConfig, get_availability_config
from .feed import ChangeFeed, FeedConnection
from .windows import SubscriptionKey

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[], Any]


@dataclass(frozen=True)
class SubscriptionHandle:
    key: SubscriptionKey
    token: int


@dataclass(eq=False)
class _FeedEntry:
    spot_id: int
    callbacks: dict[int, ChangeCallback] = field(default_factory=dict)
    connection: FeedConnection | None = None
    pending_flush: asyncio.TimerHandle | None = None
    retry_task: asyncio.Task | None = None


class ChangeFeedMultiplexer:
    """Shares change feed connections between consumers of the same key."""

    def __init__(self, feed: ChangeFeed, config: AvailabilityConfig | None = None):
        self.feed = feed
        self.config = config or get_availability_config()
        self._entries: dict[SubscriptionKey, _FeedEntry] = {}
        self._lock = asyncio.Lock()
        self._tokens = itertools.count(1)
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    # ── Registration ─────────────────────────────────────────────────────

    async def register(
        self,
        key: SubscriptionKey,
        spot_id: int,
        on_change: ChangeCallback,
    ) -> SubscriptionHandle:
        """
        Add a consumer for key. Opens the feed connection on first use.

        A failed open does not raise: the consumer is registered, the
        connection is retried in the background.
        """
        async with self._lock:
            if self._closed:
                raise RuntimeError("multiplexer is torn down")

            handle = SubscriptionHandle(key, next(self._tokens))
            entry = self._entries.get(key)
            if entry is None:
                entry = _FeedEntry(spot_id=spot_id)
                self._entries[key] = entry
                entry.callbacks[handle.token] = on_change
                await self._open(key, entry)
            else:
                entry.callbacks[handle.token] = on_change

            logger.debug(f"Registered consumer {handle.token} on {key} ({len(entry.callbacks)} total)")
            return handle

    async def unregister(self, handle: SubscriptionHandle) -> None:
        """Remove a consumer. The last one out closes the connection."""
        async with self._lock:
            entry = self._entries.get(handle.key)
            if entry is None or entry.callbacks.pop(handle.token, None) is None:
                return
            if not entry.callbacks:
                del self._entries[handle.key]
                await self._release(handle.key, entry)

    async def teardown(self) -> None:
        """Close every connection (application shutdown)."""
        async with self._lock:
            self._closed = True
            entries = list(self._entries.items())
            self._entries.clear()
            for key, entry in entries:
                await self._release(key, entry)

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Change feed multiplexer torn down")

    # ── Introspection ────────────────────────────────────────────────────

    def connection_count(self, key: SubscriptionKey | None = None) -> int:
        """Live feed connections, for one key or overall."""
        if key is not None:
            entry = self._entries.get(key)
            return int(entry is not None and entry.connection is not None)
        return sum(1 for e in self._entries.values() if e.connection is not None)

    def consumer_count(self, key: SubscriptionKey) -> int:
        entry = self._entries.get(key)
        return len(entry.callbacks) if entry else 0

    # ── Connections ──────────────────────────────────────────────────────

    async def _subscribe(self, key: SubscriptionKey, entry: _FeedEntry) -> None:
        entry.connection = await self.feed.subscribe(
            entry.spot_id,
            lambda: self._on_feed_event(key),
            on_lost=lambda: self._on_feed_lost(key, entry),
        )

    async def _open(self, key: SubscriptionKey, entry: _FeedEntry) -> None:
        """Open the connection for a new entry (lock held)."""
        try:
            await self._subscribe(key, entry)
        except Exception as e:
            logger.warning(f"Change feed subscribe failed for {key}: {e!r}; retrying in background")
            entry.retry_task = self._spawn(self._retry_open(key, entry))

    async def _retry_open(self, key: SubscriptionKey, entry: _FeedEntry) -> None:
        attempts = self.config.feed_retry_attempts
        for attempt in range(1, attempts + 1):
            await asyncio.sleep(self.config.feed_retry_delay_seconds)
            async with self._lock:
                if self._entries.get(key) is not entry:
                    return
                try:
                    await self._subscribe(key, entry)
                except Exception as e:
                    logger.warning(f"Change feed retry {attempt}/{attempts} failed for {key}: {e!r}")
                    continue
                entry.retry_task = None
                logger.info(f"Change feed for {key} established on retry {attempt}")
                # changes may have been missed while disconnected
                self._on_feed_event(key)
                return

        entry.retry_task = None
        logger.error(f"Change feed for {key} unavailable after {attempts} retries; availability will not update live")

    async def _release(self, key: SubscriptionKey, entry: _FeedEntry) -> None:
        """Cancel timers/retries and close the connection (lock held)."""
        if entry.pending_flush is not None:
            entry.pending_flush.cancel()
            entry.pending_flush = None
        if entry.retry_task is not None and entry.retry_task is not asyncio.current_task():
            entry.retry_task.cancel()
            entry.retry_task = None

        connection, entry.connection = entry.connection, None
        if connection is not None:
            await self._close_connection(key, connection)

    async def _close_connection(self, key: SubscriptionKey, connection: FeedConnection) -> None:
        try:
            await connection.close()
        except Exception:
            logger.exception(f"Failed to close change feed for {key}")

    def _on_feed_lost(self, key: SubscriptionKey, entry: _FeedEntry) -> None:
        """Listener died: re-subscribe unless the entry is gone or already retrying."""
        if self._closed or self._entries.get(key) is not entry:
            return
        self._spawn(self._reconnect(key, entry))

    async def _reconnect(self, key: SubscriptionKey, entry: _FeedEntry) -> None:
        async with self._lock:
            if self._closed or self._entries.get(key) is not entry or entry.retry_task is not None:
                return
            connection, entry.connection = entry.connection, None
            if connection is not None:
                await self._close_connection(key, connection)
            logger.warning(f"Change feed for {key} lost; re-subscribing in background")
            entry.retry_task = self._spawn(self._retry_open(key, entry))

    # ── Notification ─────────────────────────────────────────────────────

    def _on_feed_event(self, key: SubscriptionKey) -> None:
        """Feed event: schedule one flush; events before it fires coalesce."""
        entry = self._entries.get(key)
        if entry is None or entry.pending_flush is not None:
            return
        loop = asyncio.get_running_loop()
        entry.pending_flush = loop.call_later(self.config.debounce_seconds, self._flush, key, entry)

    def notify(self, key: SubscriptionKey) -> None:
        """Treat as a feed event for key (manual refresh)."""
        self._on_feed_event(key)

    def _flush(self, key: SubscriptionKey, entry: _FeedEntry) -> None:
        entry.pending_flush = None
        if self._entries.get(key) is not entry:
            return

        callbacks = list(entry.callbacks.values())
        logger.debug(f"Notifying {len(callbacks)} consumer(s) of {key}")
        for callback in callbacks:
            try:
                result = callback()
            except Exception:
                logger.exception(f"Change callback failed for {key}")
                continue
            if inspect.isawaitable(result):
                self._spawn(result)

    def _spawn(self, awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Change consumer task failed: {exc!r}", exc_info=exc)
