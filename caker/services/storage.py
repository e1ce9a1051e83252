# services/storage.py
"""
Byte-level persistent stores.
- RedisStore: durable layer backed by redis.asyncio
- MemoryStore: process-local dict, for memory-only setups and tests
"""

import logging
from typing import Dict, Optional, Protocol, runtime_checkable

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


@runtime_checkable
class PersistentStore(Protocol):
    async def get_bytes(self, key: str) -> Optional[bytes]: ...

    async def set_bytes(self, key: str, data: bytes) -> None: ...

    async def delete_bytes(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self):
        self._data: Dict[str, bytes] = {}

    async def get_bytes(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def set_bytes(self, key: str, data: bytes) -> None:
        self._data[key] = bytes(data)

    async def delete_bytes(self, key: str) -> None:
        self._data.pop(key, None)

    async def delete_prefix(self, prefix: str) -> int:
        keys = [k for k in self._data.keys() if k.startswith(prefix)]
        for k in keys:
            self._data.pop(k, None)
        return len(keys)

    async def ping(self) -> bool:
        return True

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


class RedisStore:
    """
    Persistent store on top of a redis.asyncio client.

    The client must be created with decode_responses=False so values come
    back as bytes (see deps.create_redis_client).
    """

    def __init__(self, redis_client: Redis, scan_count: int = 500):
        self.redis = redis_client
        self.scan_count = scan_count

    async def get_bytes(self, key: str) -> Optional[bytes]:
        data = await self.redis.get(key)
        if data is None:
            return None
        if isinstance(data, str):
            return data.encode("utf-8")
        return data

    async def set_bytes(self, key: str, data: bytes) -> None:
        await self.redis.set(key, data)

    async def delete_bytes(self, key: str) -> None:
        await self.redis.delete(key)

    async def delete_prefix(self, prefix: str) -> int:
        """Delete keys by prefix using SCAN and pipelined deletes"""
        if not prefix or not isinstance(prefix, str):
            raise ValueError("Invalid prefix")

        cursor = 0
        deleted_count = 0
        pattern = f"{_escape_glob(prefix)}*"

        while True:
            cursor, keys = await self.redis.scan(cursor=cursor, match=pattern, count=self.scan_count)
            if keys:
                async with self.redis.pipeline() as pipe:
                    for key in keys:
                        pipe.delete(key)
                    await pipe.execute()
                    deleted_count += len(keys)
            if cursor == 0:
                break

        logger.debug(f"Deleted {deleted_count} keys with prefix: {prefix}")
        return deleted_count

    async def ping(self) -> bool:
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False

    async def close(self) -> None:
        await self.redis.aclose()


def _escape_glob(value: str) -> str:
    # SCAN MATCH uses glob syntax
    for ch in ("\\", "*", "?", "[", "]"):
        value = value.replace(ch, f"\\{ch}")
    return value
