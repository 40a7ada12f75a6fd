import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .database import SessionLocal
from .redis_client import create_async_redis, redis_client
from .routers import slots
from .services.slots import (
    ChangeFeedMultiplexer,
    RedisChangeFeed,
    SqlBookingStore,
    get_availability_config,
    install_change_publishers,
)

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Composition root: one store, one feed, one multiplexer per process.

    The change publishers fire only for sessions from this SessionLocal.
    This service does not write bookings itself; the hooks cover writers
    that run in-process with it (admin tooling, scripts importing app.database).
    Other writers publish with notify_spot_changed() or POST /slots/{id}/notify.
    """
    async_redis = create_async_redis()
    config = get_availability_config()

    app.state.store = SqlBookingStore(SessionLocal)
    app.state.multiplexer = ChangeFeedMultiplexer(RedisChangeFeed(async_redis), config)
    install_change_publishers(SessionLocal, redis_client)
    logger.info(f"Slot availability service started (tz={config.timezone})")

    try:
        yield
    finally:
        await app.state.multiplexer.teardown()
        await async_redis.aclose()
        logger.info("Slot availability service stopped")


app = FastAPI(title="Parking Slot Availability API", lifespan=lifespan)
app.include_router(slots.router)


@app.get("/health")
def health():
    try:
        return {"redis": redis_client.ping()}
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        return {"redis": False}
