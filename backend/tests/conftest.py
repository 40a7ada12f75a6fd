"""Fixtures for slot availability tests."""
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models.generated import Base
from app.services.slots import AvailabilityConfig, SqlBookingStore, overlaps


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeConnection:
    def __init__(self, spot_id, on_change, on_lost=None):
        self.spot_id = spot_id
        self.on_change = on_change
        self.on_lost = on_lost
        self.closed = False

    async def close(self):
        self.closed = True


class FakeChangeFeed:
    """In-process change feed; fire() plays the role of a booking mutation."""

    def __init__(self, fail_times=0):
        self.fail_times = fail_times
        self.connections = []
        self.subscribe_calls = 0

    async def subscribe(self, spot_id, on_change, on_lost=None):
        self.subscribe_calls += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError("feed down")
        connection = FakeConnection(spot_id, on_change, on_lost)
        self.connections.append(connection)
        return connection

    @property
    def open_connections(self):
        return [c for c in self.connections if not c.closed]

    def fire(self, spot_id):
        for connection in self.open_connections:
            if connection.spot_id == spot_id:
                connection.on_change()

    def drop(self, spot_id):
        """Kill the listeners of a spot, like a Redis connection reset."""
        for connection in self.open_connections:
            if connection.spot_id == spot_id and connection.on_lost is not None:
                connection.on_lost()


class MemoryStore:
    """Booking store over plain lists."""

    def __init__(self, intervals=(), blocks=()):
        self.intervals = list(intervals)
        self.blocks = list(blocks)
        self.queries = 0

    def fetch_intervals(self, spot_id, start, end):
        self.queries += 1
        span = _Span(start, end)
        return [i for i in self.intervals if i.spot_id == spot_id and i.occupies and overlaps(i, span)]

    def fetch_blocks(self, spot_id, start, end):
        span = _Span(start, end)
        return [b for b in self.blocks if b.spot_id == spot_id and overlaps(b, span)]


class FailingStore:
    def fetch_intervals(self, spot_id, start, end):
        raise RuntimeError("database unavailable")

    def fetch_blocks(self, spot_id, start, end):
        raise RuntimeError("database unavailable")


class _Span:
    def __init__(self, start, end):
        self.start = start
        self.end = end


class FakeRedis:
    """Records publish() calls like redis.Redis would receive them."""

    def __init__(self, receivers=1):
        self.published = []
        self.receivers = receivers

    def publish(self, channel, message):
        self.published.append((channel, message))
        return self.receivers


@pytest.fixture
def config():
    return AvailabilityConfig(
        debounce_ms=10,
        feed_retry_attempts=3,
        feed_retry_delay_seconds=0.01,
        timezone="Asia/Bangkok",
    )


@pytest.fixture
def feed():
    return FakeChangeFeed()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    return SqlBookingStore(session_factory)
