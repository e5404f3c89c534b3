from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest

from permaweb_storage.errors import NotFound
from permaweb_storage.storage.cache import ContentCache


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_register_is_monotonic_and_refreshes_in_place():
    cache = ContentCache()
    cache.register("pkg-a", {"v": 1})
    cache.register("pkg-b", {"v": 1})
    cache.register("pkg-a", {"v": 2})

    assert cache.names() == ["pkg-a", "pkg-b"]
    assert cache.metadata("pkg-a") == {"v": 2}
    assert dict(cache.files) == {"pkg-a": {"v": 2}, "pkg-b": {"v": 1}}


def test_documents_are_copied_in_and_out():
    cache = ContentCache()
    doc = {"name": "pkg-a", "dist-tags": {"latest": "1.0.0"}}
    cache.register("pkg-a", doc)

    doc["dist-tags"]["latest"] = "2.0.0"
    out = cache.metadata("pkg-a")
    out["dist-tags"]["latest"] = "3.0.0"

    assert cache.metadata("pkg-a") == {"name": "pkg-a", "dist-tags": {"latest": "1.0.0"}}
    assert cache.metadata("missing") is None


def test_views_are_read_only():
    cache = ContentCache()
    cache.register("pkg-a", {})
    with pytest.raises(TypeError):
        cache.files["pkg-a"] = None  # type: ignore[index]
    with pytest.raises(TypeError):
        cache.tx_names["t"] = "x"  # type: ignore[index]


def test_tx_names_never_rebind():
    cache = ContentCache()
    cache.remember_tx("t1", "pkg-a")
    cache.remember_tx("t1", "pkg-b")
    assert cache.tx_names["t1"] == "pkg-a"
    assert cache.known_tx("t1")
    assert cache.has_name("pkg-a")


def test_staleness_follows_clock():
    clock = _Clock()
    cache = ContentCache(clock=clock)
    cache.register("pkg-a", {})

    assert not cache.is_stale("pkg-a", None)
    assert not cache.is_stale("pkg-a", 10)
    clock.now += 11
    assert cache.is_stale("pkg-a", 10)
    cache.touch("pkg-a")
    assert not cache.is_stale("pkg-a", 10)
    assert not cache.is_stale("unknown", 10)


@pytest.mark.asyncio
async def test_refresh_fetches_only_unknown_ids():
    cache = ContentCache()
    fetched: List[str] = []

    async def resolve(tx_id: str) -> Optional[str]:
        fetched.append(tx_id)
        return {"t1": "pkg-a", "t2": "pkg-b", "t3": None}[tx_id]

    assert await cache.refresh(["t1", "t2", "t3"], resolve) == ["pkg-a", "pkg-b"]
    assert sorted(fetched) == ["t1", "t2", "t3"]

    fetched.clear()
    assert await cache.refresh(["t1", "t2", "t3", "t1"], resolve) == ["pkg-a", "pkg-b"]
    # t3 names no package; that is a fact of its content, so it is not refetched either.
    assert fetched == []


@pytest.mark.asyncio
async def test_refresh_retries_content_not_served_yet():
    cache = ContentCache()
    served = {"t1": False}
    fetched: List[str] = []

    async def resolve(tx_id: str) -> Optional[str]:
        fetched.append(tx_id)
        if not served[tx_id]:
            raise NotFound(f"transaction {tx_id}")
        return "pkg-a"

    assert await cache.refresh(["t1"], resolve) == []
    served["t1"] = True
    assert await cache.refresh(["t1"], resolve) == ["pkg-a"]
    assert fetched == ["t1", "t1"]


@pytest.mark.asyncio
async def test_refresh_caps_parallel_resolves():
    cache = ContentCache(max_concurrency=2)
    in_flight = 0
    peak = 0

    async def resolve(tx_id: str) -> Optional[str]:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        in_flight -= 1
        return "pkg-" + tx_id

    names = await cache.refresh([str(i) for i in range(6)], resolve)

    assert len(names) == 6
    assert peak == 2


@pytest.mark.asyncio
async def test_concurrent_refreshes_do_not_duplicate_fetches():
    cache = ContentCache()
    fetched: List[str] = []

    async def resolve(tx_id: str) -> Optional[str]:
        fetched.append(tx_id)
        await asyncio.sleep(0)
        return "pkg-" + tx_id

    await asyncio.gather(cache.refresh(["a", "b"], resolve), cache.refresh(["a", "b"], resolve))

    assert sorted(fetched) == ["a", "b"]
    assert cache.names() == ["pkg-a", "pkg-b"]
