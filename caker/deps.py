import redis.asyncio as aioredis
from redis.asyncio import Redis

from caker.services.storage import RedisStore


def create_redis_client(url: str) -> Redis:
    # bytes in, bytes out: the codec owns the encoding
    return aioredis.from_url(url, decode_responses=False)


def create_redis_store(url: str) -> RedisStore:
    return RedisStore(create_redis_client(url))
