"""Tests for warming from and writing to the persistent store."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import BaseModel

from caker.services.cache_keys import cache_key
from caker.services.cache_service import Caker
from caker.services.codec import JsonCodec
from caker.services.key_state import Completed
from caker.services.storage import MemoryStore

from conftest import CallCounter, FailingStore, SlowStore


class Course(BaseModel):
    id: str
    title: str
    tags: list[str] = []


class TestRestart:
    @pytest.mark.asyncio
    async def test_value_survives_restart(self, store):
        async with Caker(store=store) as first:
            before = datetime.now(timezone.utc)
            await first.get("k", 3600, CallCounter({"a": 1, "b": [1, 2]}))
            stored = first._table.get(cache_key("k"))

        compute = CallCounter("should not be called")
        async with Caker(store=store) as second:
            value = await second.get("k", 3600, compute)
            warmed = second._table.get(cache_key("k"))

        assert value == {"a": 1, "b": [1, 2]}
        assert compute.calls == 0
        assert isinstance(warmed, Completed)
        assert warmed.expiration_date >= stored.expiration_date - timedelta(milliseconds=1)
        assert warmed.expiration_date >= before + timedelta(seconds=3599)
        assert second.stats()["persistent_hits"] == 1

    @pytest.mark.asyncio
    async def test_model_round_trip_with_value_type(self, store):
        course = Course(id="c1", title="Intro", tags=["python"])
        async with Caker(store=store) as first:
            await first.get("course:c1", 3600, CallCounter(course), value_type=Course)

        async with Caker(store=store) as second:
            value = await second.get("course:c1", 3600, CallCounter(), value_type=Course)

        assert isinstance(value, Course)
        assert value == course

    @pytest.mark.asyncio
    async def test_expired_persisted_entry_is_a_miss(self, store):
        codec = JsonCodec()
        past = datetime.now(timezone.utc) - timedelta(seconds=1)
        await store.set_bytes(cache_key("k"), codec.encode("old", past))

        compute = CallCounter("new")
        async with Caker(store=store) as cache:
            assert await cache.get("k", 60, compute) == "new"
        assert compute.calls == 1

    @pytest.mark.asyncio
    async def test_namespace_prefix_isolates_keys(self, store):
        async with Caker(store=store, key_prefix="app.one.") as one:
            await one.get("k", 3600, CallCounter("one"))

        compute = CallCounter("two")
        async with Caker(store=store, key_prefix="app.two.") as two:
            assert await two.get("k", 3600, compute) == "two"
        assert compute.calls == 1
        assert "app.one.k" in store
        assert "app.two.k" in store


class TestStoreFaults:
    @pytest.mark.asyncio
    async def test_corrupt_entry_is_a_miss_and_cleaned(self, store):
        await store.set_bytes(cache_key("k"), b"\x00not json")

        compute = CallCounter("fresh")
        async with Caker(store=store) as cache:
            assert await cache.get("k", 60, compute) == "fresh"
        assert compute.calls == 1
        # rewritten with a valid entry
        entry = JsonCodec().decode(await store.get_bytes(cache_key("k")))
        assert entry.value == "fresh"

    @pytest.mark.asyncio
    async def test_type_drift_is_a_miss(self, store):
        codec = JsonCodec()
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        await store.set_bytes(cache_key("course:c1"), codec.encode("not a course", future))

        course = Course(id="c1", title="Intro")
        async with Caker(store=store) as cache:
            value = await cache.get("course:c1", 60, CallCounter(course), value_type=Course)
        assert value is course

    @pytest.mark.asyncio
    async def test_write_failure_is_swallowed(self):
        store = FailingStore(fail_set=True)
        compute = CallCounter("v")
        async with Caker(store=store) as cache:
            assert await cache.get("k", 60, compute) == "v"
            assert await cache.get("k", 60, compute) == "v"
        assert compute.calls == 1
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_unencodable_value_is_cached_in_memory(self, store):
        value = object()
        compute = CallCounter(value)
        async with Caker(store=store) as cache:
            assert await cache.get("k", 60, compute) is value
            assert await cache.get("k", 60, compute) is value
        assert compute.calls == 1
        assert cache_key("k") not in store

    @pytest.mark.asyncio
    async def test_read_failure_is_a_miss(self):
        store = FailingStore(fail_get=True)
        compute = CallCounter("v")
        async with Caker(store=store) as cache:
            assert await cache.get("k", 60, compute) == "v"
        assert compute.calls == 1

    @pytest.mark.asyncio
    async def test_delete_failure_still_clears_memory(self):
        store = FailingStore(fail_delete=True)
        compute = CallCounter("v")
        async with Caker(store=store) as cache:
            await cache.get("k", 60, compute)
            await cache.delete("k")
            assert cache._table.get(cache_key("k")) is None


class TestDeleteDuringStoreIO:
    @pytest.mark.asyncio
    async def test_delete_during_write_is_not_undone(self):
        store = SlowStore(write_delay=0.05)
        async with Caker(store=store) as cache:
            getter = asyncio.create_task(cache.get("k", 3600, CallCounter("old")))
            await store.writing.wait()
            await cache.delete("k")

            assert await getter == "old"
            assert cache_key("k") not in store

            fresh = CallCounter("fresh")
            assert await cache.get("k", 3600, fresh) == "fresh"
            assert fresh.calls == 1
            assert len(cache._key_locks) == 0

    @pytest.mark.asyncio
    async def test_delete_during_read_discards_loaded_entry(self):
        store = SlowStore(read_delay=0.05)
        expires = datetime.now(timezone.utc) + timedelta(hours=1)
        await MemoryStore.set_bytes(store, cache_key("k"), JsonCodec().encode("old", expires))

        fresh = CallCounter("fresh")
        async with Caker(store=store) as cache:
            getter = asyncio.create_task(cache.get("k", 3600, fresh))
            await store.reading.wait()
            await cache.delete("k")

            assert await getter == "fresh"
            assert fresh.calls == 1
            assert cache.stats()["persistent_hits"] == 0
            assert await cache.get("k", 3600, CallCounter("unused")) == "fresh"

        restarted = CallCounter("unused")
        async with Caker(store=store) as cache:
            assert await cache.get("k", 3600, restarted) == "fresh"
        assert restarted.calls == 0

    @pytest.mark.asyncio
    async def test_prefix_invalidation_during_write_is_not_undone(self):
        store = SlowStore(write_delay=0.05)
        async with Caker(store=store) as cache:
            getter = asyncio.create_task(cache.get("course:1", 3600, CallCounter("old")))
            await store.writing.wait()
            assert await cache.invalidate_prefix("course:") == 1

            assert await getter == "old"
            assert len(store) == 0

            fresh = CallCounter("fresh")
            assert await cache.get("course:1", 3600, fresh) == "fresh"
            assert fresh.calls == 1
