"""Tests for the TTL cache and cache key handling."""

import asyncio

import pytest

from repodash.cache import TTLCache, split_key
from repodash.errors import InvalidKeyError


def test_split_key_valid() -> None:
    assert split_key("octocat/Hello-World") == ("octocat", "Hello-World")
    # Only the first slash separates owner from name.
    assert split_key("octocat/a/b") == ("octocat", "a/b")


@pytest.mark.parametrize("key", ["not-a-repo", "/name", "owner/", "", "/"])
def test_split_key_invalid(key: str) -> None:
    with pytest.raises(InvalidKeyError) as exc:
        split_key(key)
    assert exc.value.user_message == "Invalid repository name"


def test_ttl_scenario() -> None:
    """Verifies freshness at t=100, t=150 and t=200 for an entry stored at t=100."""
    cache: TTLCache[str] = TTLCache("issues")
    cache.store(["a", "b"], "octocat/Hello-World", fetched_at=100)

    assert cache.cached("octocat/Hello-World", now=100, max_age=90) == ["a", "b"]
    assert cache.cached("octocat/Hello-World", now=150, max_age=90) == ["a", "b"]
    assert not cache.needs_refresh("octocat/Hello-World", now=150, max_age=90)

    assert cache.cached("octocat/Hello-World", now=200, max_age=90) is None
    assert cache.stale("octocat/Hello-World") == ["a", "b"]
    assert cache.needs_refresh("octocat/Hello-World", now=200, max_age=90)


def test_age_equal_to_ttl_is_fresh() -> None:
    cache: TTLCache[int] = TTLCache()
    cache.store([1], "o/n", fetched_at=0)
    assert cache.cached("o/n", now=90, max_age=90) == [1]
    assert not cache.needs_refresh("o/n", now=90, max_age=90)


def test_missing_entry() -> None:
    cache: TTLCache[int] = TTLCache()
    assert cache.cached("o/n", now=0, max_age=90) is None
    assert cache.stale("o/n") is None
    assert cache.count("o/n") is None
    assert cache.needs_refresh("o/n", now=0, max_age=90)
    assert "o/n" not in cache


def test_empty_result_is_an_entry() -> None:
    """Verifies that a successful empty fetch is cached, not treated as missing."""
    cache: TTLCache[int] = TTLCache()
    cache.store([], "o/n", fetched_at=10)
    assert cache.stale("o/n") == []
    assert cache.count("o/n") == 0
    assert not cache.needs_refresh("o/n", now=20, max_age=90)


def test_out_of_order_store_keeps_latest() -> None:
    """Verifies that a result completing earlier never replaces a later one."""
    cache: TTLCache[str] = TTLCache()
    assert cache.store(["B"], "o/n", fetched_at=101)
    assert not cache.store(["A"], "o/n", fetched_at=100)

    entry = cache.entry("o/n")
    assert entry is not None
    assert entry.items == ("B",)
    assert entry.fetched_at == 101


def test_clear_drops_entries() -> None:
    cache: TTLCache[int] = TTLCache()
    cache.store([1], "o/n", fetched_at=0)
    cache.clear()
    assert cache.stale("o/n") is None


@pytest.mark.asyncio
async def test_task_is_shared_while_in_flight() -> None:
    """Verifies that concurrent callers receive the same task for a key."""
    cache: TTLCache[int] = TTLCache()
    release = asyncio.Event()
    calls = 0

    async def fetch() -> list[int]:
        nonlocal calls
        calls += 1
        await release.wait()
        return [1]

    first = cache.task("o/n", fetch)
    second = cache.task("o/n", fetch)
    other = cache.task("o/other", fetch)

    assert first is second
    assert first is not other
    assert cache.inflight("o/n") is first

    release.set()
    assert await first == [1]
    await other
    assert calls == 2


@pytest.mark.asyncio
async def test_finished_task_is_not_reused() -> None:
    cache: TTLCache[int] = TTLCache()

    async def fetch() -> list[int]:
        return [1]

    first = cache.task("o/n", fetch)
    await first
    second = cache.task("o/n", fetch)

    assert second is not first
    await second


@pytest.mark.asyncio
async def test_clear_inflight_allows_new_task() -> None:
    cache: TTLCache[int] = TTLCache()
    release = asyncio.Event()

    async def fetch() -> list[int]:
        await release.wait()
        return []

    first = cache.task("o/n", fetch)
    cache.clear_inflight("o/n")
    assert cache.inflight("o/n") is None

    second = cache.task("o/n", fetch)
    assert second is not first

    release.set()
    await asyncio.gather(first, second)
