# services/cache_decorators.py
import functools
from typing import Any, Awaitable, Callable, Optional

from caker.services.cache_service import TTL, CacheProtocol


def cached(cache: CacheProtocol, key_builder: Callable[..., str], ttl: TTL, value_type: Optional[Any] = None):
    """
    Usage:
    @cached(cache, lambda user_id: f"dashboard:{user_id}", ttl=300)
    async def build_dashboard(user_id: str) -> dict:
        ...

    Calls with the same built key share one computation while it is fresh.
    """
    def decorator(fn: Callable[..., Awaitable[Any]]):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            key = key_builder(*args, **kwargs)
            return await cache.get(key, ttl, lambda: fn(*args, **kwargs), value_type=value_type)

        async def invalidate(*args, **kwargs) -> None:
            await cache.delete(key_builder(*args, **kwargs))

        wrapper.invalidate = invalidate
        return wrapper
    return decorator
