import asyncio

import pytest

from marketsync.domain import Resolved, Stale
from marketsync.errors import NetworkError, UpstreamError
from marketsync.services.background import BackgroundQueue
from marketsync.services.cache_store import CacheStore
from marketsync.services.coordinator import RequestCoordinator

from conftest import FakeClock


def _coordinator(clock=None, timeout=None):
    store = CacheStore(clock=clock or FakeClock())
    background = BackgroundQueue()
    return RequestCoordinator(store, background=background, timeout=timeout), store, background


def test_concurrent_misses_share_one_fetch():
    async def scenario():
        coordinator, store, _ = _coordinator()
        calls = 0

        async def fetcher():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return {"id": "m1"}

        results = await asyncio.gather(
            *(coordinator.resolve("market:m1:detail", fetcher, ttl=60) for _ in range(5))
        )
        return calls, results, store, coordinator

    calls, results, store, coordinator = asyncio.run(scenario())
    assert calls == 1
    assert all(result == Resolved({"id": "m1"}, from_cache=False) for result in results)
    assert store.get("market:m1:detail").data == {"id": "m1"}
    assert not coordinator.is_in_flight("market:m1:detail")


def test_concurrent_callers_observe_the_same_failure():
    async def scenario():
        coordinator, store, _ = _coordinator()
        calls = 0

        async def fetcher():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            raise UpstreamError(503, url="https://gamma-api.polymarket.com/markets/m1")

        results = await asyncio.gather(
            *(coordinator.resolve("k", fetcher, ttl=60) for _ in range(3)),
            return_exceptions=True,
        )
        return calls, results, store, coordinator

    calls, results, store, coordinator = asyncio.run(scenario())
    assert calls == 1
    assert all(isinstance(result, UpstreamError) for result in results)
    assert "k" not in store
    assert coordinator.in_flight_keys() == ()


def test_fresh_hit_skips_network():
    async def scenario():
        coordinator, store, _ = _coordinator()
        store.set("k", "cached", ttl=60)

        async def fetcher():
            raise AssertionError("fresh entries must not be fetched")

        return await coordinator.resolve("k", fetcher, ttl=60)

    assert asyncio.run(scenario()) == Resolved("cached", from_cache=True)


def test_stale_hit_returns_immediately_and_refreshes_in_background():
    async def scenario():
        clock = FakeClock()
        coordinator, store, background = _coordinator(clock)
        store.set("k", "old", ttl=1)
        clock.advance(2)
        release = asyncio.Event()

        async def fetcher():
            await release.wait()
            return "new"

        result = await coordinator.resolve("k", fetcher, ttl=1)
        in_flight = coordinator.is_in_flight("k")
        before = store.get("k").data
        release.set()
        await background.drain()
        return result, in_flight, before, store.get("k")

    result, in_flight, before, after = asyncio.run(scenario())
    assert result == Stale("old")
    assert in_flight is True
    assert before == "old"
    assert after.data == "new"
    assert after.is_stale is False


def test_failed_revalidation_keeps_stale_value():
    async def scenario():
        clock = FakeClock()
        coordinator, store, background = _coordinator(clock)
        store.set("k", "old", ttl=1)
        clock.advance(2)

        async def fetcher():
            raise NetworkError("connection reset")

        result = await coordinator.resolve("k", fetcher, ttl=1)
        await background.drain()
        return result, store.get("k"), coordinator.is_in_flight("k")

    result, cached, in_flight = asyncio.run(scenario())
    assert result == Stale("old")
    assert cached.data == "old"
    assert cached.is_stale is True
    assert in_flight is False


def test_revalidate_is_deduplicated_against_in_flight_work():
    async def scenario():
        coordinator, store, background = _coordinator()
        calls = 0

        async def fetcher():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return calls

        coordinator.revalidate("k", fetcher, ttl=10)
        coordinator.revalidate("k", fetcher, ttl=10)
        joined = await coordinator.resolve("k", fetcher, ttl=10)
        await background.drain()
        return calls, joined

    calls, joined = asyncio.run(scenario())
    assert calls == 1
    assert joined == Resolved(1, from_cache=False)


def test_invalidation_during_revalidation_joins_the_running_fetch():
    async def scenario():
        clock = FakeClock()
        coordinator, store, background = _coordinator(clock)
        store.set("k", "old", ttl=1)
        clock.advance(2)
        release = asyncio.Event()
        calls = 0

        async def fetcher():
            nonlocal calls
            calls += 1
            await release.wait()
            return f"v{calls}"

        stale = await coordinator.resolve("k", fetcher, ttl=60)
        store.delete("k")
        foreground = asyncio.ensure_future(coordinator.resolve("k", fetcher, ttl=60))
        await asyncio.sleep(0)
        release.set()
        result = await foreground
        await background.drain()
        return stale, result, calls, store.get("k").data

    stale, result, calls, cached = asyncio.run(scenario())
    assert stale == Stale("old")
    assert result == Resolved("v1", from_cache=False)
    assert calls == 1
    assert cached == "v1"


def test_results_are_applied_in_completion_order():
    async def scenario():
        clock = FakeClock()
        coordinator, store, background = _coordinator(clock)
        store.set("k", "old", ttl=1)
        clock.advance(2)
        release = asyncio.Event()

        async def fetcher():
            await release.wait()
            return "revalidated"

        await coordinator.resolve("k", fetcher, ttl=60)
        store.set("k", "written meanwhile", ttl=60)
        release.set()
        await background.drain()
        return store.get("k").data

    assert asyncio.run(scenario()) == "revalidated"


def test_timeout_maps_to_network_error_and_clears_registration():
    async def scenario():
        coordinator, _, _ = _coordinator(timeout=0.01)

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(NetworkError):
            await coordinator.resolve("k", slow, ttl=10)
        return coordinator.is_in_flight("k")

    assert asyncio.run(scenario()) is False


def test_cancelled_caller_does_not_cancel_shared_fetch():
    async def scenario():
        coordinator, store, _ = _coordinator()

        async def fetcher():
            await asyncio.sleep(0.02)
            return "value"

        first = asyncio.ensure_future(coordinator.resolve("k", fetcher, ttl=10))
        second = asyncio.ensure_future(coordinator.resolve("k", fetcher, ttl=10))
        await asyncio.sleep(0)
        first.cancel()
        result = await second
        return result, store.get("k").data

    result, cached = asyncio.run(scenario())
    assert result == Resolved("value", from_cache=False)
    assert cached == "value"


def test_background_queue_absorbs_failures_and_skips_callback():
    async def scenario():
        background = BackgroundQueue()
        seen = []

        async def boom():
            raise UpstreamError(500)

        async def ok():
            return 42

        background.submit(boom(), name="boom", on_success=seen.append)
        background.submit(ok(), name="ok", on_success=seen.append)
        await background.drain()
        return seen, len(background)

    seen, pending = asyncio.run(scenario())
    assert seen == [42]
    assert pending == 0
