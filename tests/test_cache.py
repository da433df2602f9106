"""
Once-per-owner value cache.
"""

import pytest

from utils.cache import OnceCache

pytestmark = pytest.mark.asyncio


async def test_value_is_fetched_once():
    cache = OnceCache()
    calls = []

    async def fetch():
        calls.append(1)
        return {"outputTokenLimit": 8192}

    first = await cache.get_or_fetch(fetch)
    second = await cache.get_or_fetch(fetch)

    assert first is second
    assert len(calls) == 1
    assert cache.populated


async def test_none_is_a_cached_value():
    cache = OnceCache()
    calls = []

    async def fetch():
        calls.append(1)
        return None

    assert await cache.get_or_fetch(fetch) is None
    assert await cache.get_or_fetch(fetch) is None
    assert len(calls) == 1


async def test_failed_fetch_is_not_cached():
    cache = OnceCache()

    async def broken():
        raise RuntimeError("lookup failed")

    with pytest.raises(RuntimeError):
        await cache.get_or_fetch(broken)
    assert not cache.populated

    cache.set(5)
    assert cache.get() == 5
