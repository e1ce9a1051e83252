import asyncio

import pytest

from caker.services.cache_decorators import cached


@pytest.mark.asyncio
async def test_cached_function_runs_once_per_key(cache):
    calls = []

    @cached(cache, lambda user_id: f"dashboard:{user_id}", ttl=300)
    async def build_dashboard(user_id: str) -> dict:
        calls.append(user_id)
        await asyncio.sleep(0.01)
        return {"user": user_id}

    results = await asyncio.gather(build_dashboard("u1"), build_dashboard("u1"), build_dashboard("u2"))

    assert results == [{"user": "u1"}, {"user": "u1"}, {"user": "u2"}]
    assert sorted(calls) == ["u1", "u2"]
    assert build_dashboard.__name__ == "build_dashboard"


@pytest.mark.asyncio
async def test_invalidate(cache):
    calls = []

    @cached(cache, lambda course_id: f"course:{course_id}", ttl=300)
    async def get_course(course_id: str) -> str:
        calls.append(course_id)
        return course_id

    await get_course("c1")
    await get_course.invalidate("c1")
    await get_course("c1")
    assert calls == ["c1", "c1"]
