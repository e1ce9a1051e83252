# main.py
import logging
from typing import Optional

from caker.config import Settings, settings as default_settings
from caker.deps import create_redis_store
from caker.logging_config import setup_logging
from caker.services.cache_service import Caker

logger = logging.getLogger(__name__)


async def startup(settings: Optional[Settings] = None, configure_logging: bool = True) -> Caker:
    """Build a configured cache with its sweeper running; call inside the event loop."""
    settings = settings or default_settings

    if configure_logging:
        setup_logging(settings)

    logger.info("Starting cache...")

    store = None
    if settings.REDIS_URL:
        store = create_redis_store(settings.REDIS_URL)
        try:
            await store.redis.ping()
            logger.info("Redis connection established")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {str(e)}")
            await store.close()
            raise
    else:
        logger.info("No REDIS_URL configured; running memory-only")

    cache = Caker(
        store=store,
        sweep_interval=settings.SWEEP_INTERVAL_SECONDS,
        key_prefix=settings.CACHE_KEY_PREFIX,
    )
    await cache.start()
    logger.info("Cache startup completed successfully")
    return cache


async def shutdown(cache: Caker) -> None:
    logger.info("Starting cache shutdown...")

    try:
        await cache.close()
        logger.info("Sweeper shutdown completed")
    except Exception as e:
        logger.error(f"Error shutting down sweeper: {str(e)}")

    close = getattr(cache.store, "close", None)
    if close is not None:
        try:
            await close()
            logger.info("Store connection closed")
        except Exception as e:
            logger.error(f"Error closing store connection: {str(e)}")

    logger.info("Cache shutdown completed")
