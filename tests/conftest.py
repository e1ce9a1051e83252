"""
Shared fixtures for cache tests.

Every Caker built here runs inside the test's event loop, so its sweeper is
started on construction and must be closed on teardown.
"""

import asyncio
from typing import Optional

import pytest
import pytest_asyncio

from caker.services.cache_service import Caker
from caker.services.storage import MemoryStore


class CallCounter:
    """Async computation that counts its invocations."""

    def __init__(self, value="value", delay: float = 0.0, error: Optional[BaseException] = None):
        self.value = value
        self.delay = delay
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.value


class FailingStore(MemoryStore):
    """MemoryStore whose operations can be switched to raise."""

    def __init__(self, fail_get: bool = False, fail_set: bool = False, fail_delete: bool = False):
        super().__init__()
        self.fail_get = fail_get
        self.fail_set = fail_set
        self.fail_delete = fail_delete

    async def get_bytes(self, key: str) -> Optional[bytes]:
        if self.fail_get:
            raise ConnectionError("store unavailable")
        return await super().get_bytes(key)

    async def set_bytes(self, key: str, data: bytes) -> None:
        if self.fail_set:
            raise ConnectionError("store unavailable")
        await super().set_bytes(key, data)

    async def delete_bytes(self, key: str) -> None:
        if self.fail_delete:
            raise ConnectionError("store unavailable")
        await super().delete_bytes(key)


class SlowStore(MemoryStore):
    """MemoryStore whose reads and writes pause mid-operation; the events mark the pause."""

    def __init__(self, read_delay: float = 0.0, write_delay: float = 0.0):
        super().__init__()
        self.read_delay = read_delay
        self.write_delay = write_delay
        self.reading = asyncio.Event()
        self.writing = asyncio.Event()

    async def get_bytes(self, key: str) -> Optional[bytes]:
        self.reading.set()
        await asyncio.sleep(self.read_delay)
        return await super().get_bytes(key)

    async def set_bytes(self, key: str, data: bytes) -> None:
        self.writing.set()
        await asyncio.sleep(self.write_delay)
        await super().set_bytes(key, data)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest_asyncio.fixture
async def cache(store):
    cache = Caker(store=store)
    yield cache
    await cache.close()


@pytest_asyncio.fixture
async def memory_only_cache():
    cache = Caker()
    yield cache
    await cache.close()
