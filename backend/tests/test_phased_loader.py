import asyncio

import pytest

from marketsync.domain import Pending, Resolved, Stale
from marketsync.errors import NetworkError, RateLimitError
from marketsync.services.phased_loader import LoadPhase, ViewError

from conftest import make_market


def _seed(upstream):
    upstream.add_event(
        "e1",
        "Who wins?",
        [
            make_market("m1", "Will Alice win?", yes=0.6, group="Alice"),
            make_market("m2", "Will Bob win?", yes=0.3, group="Bob"),
        ],
    )


def test_cached_shell_renders_before_any_network_call(make_context, upstream):
    _seed(upstream)
    upstream.catalog = [make_market("m1", "Will Alice win?", yes=0.55)]

    async def scenario():
        context = make_context()
        await context.data.catalog()
        loader = context.loader()
        task = loader.open("m1")
        initial = (loader.view.phase, loader.view.shell, upstream.count("fetch_market"))
        view = await task
        return initial, view

    (phase, shell, fetches), view = asyncio.run(scenario())
    assert phase is LoadPhase.SHELL_ONLY
    assert shell.title == "Will Alice win?"
    assert shell.probability == pytest.approx(55.0)
    assert fetches == 0
    assert view.phase is LoadPhase.SUBRESOURCES_RESOLVED
    assert view.shell is shell
    assert view.detail.value.probability == pytest.approx(60.0)


def test_phases_advance_in_order_and_subresources_merge(make_context, upstream):
    _seed(upstream)
    phases = []

    def on_change(view):
        if not phases or phases[-1] is not view.phase:
            phases.append(view.phase)

    async def scenario():
        loader = make_context().loader(on_change=on_change)
        view = await loader.open("m1")
        await loader.drain()
        return view

    view = asyncio.run(scenario())
    assert phases == [
        LoadPhase.DETAIL_PENDING,
        LoadPhase.DETAIL_RESOLVED,
        LoadPhase.SUBRESOURCES_PENDING,
        LoadPhase.SUBRESOURCES_RESOLVED,
    ]
    assert view.error is None
    assert len(view.trades.value) == 3
    assert view.order_book.value.spread == pytest.approx(0.02)
    assert view.traders_count.value == 2
    assert [holder.wallet for holder in view.holders.value] == ["0xccc", "0xddd"]
    assert view.top_traders.value[0].wallet == "0xaaa"
    assert [item.outcome for item in view.outcomes.value.outcomes] == ["Alice", "Bob"]


def test_malformed_trade_timestamps_do_not_stall_the_load(make_context, upstream):
    upstream.add_market(make_market("m1", "Market"))
    upstream.trades["cond-m1"] = [
        {"proxyWallet": "0xaaa", "side": "BUY", "size": 5, "price": 0.5, "timestamp": 10**17},
        {"proxyWallet": "0xbbb", "side": "SELL", "size": 5, "price": 0.5, "timestamp": 1_700_000_000},
    ]

    async def scenario():
        loader = make_context().loader()
        view = await loader.open("m1")
        await loader.drain()
        return view

    view = asyncio.run(scenario())
    assert view.phase is LoadPhase.SUBRESOURCES_RESOLVED
    assert view.subresource_errors == {}
    assert view.trades.value[0].timestamp is None
    assert view.traders_count.value == 2


def test_slow_previous_entity_never_overwrites_current_one(make_context, upstream):
    upstream.add_market(make_market("A", "Slow market"))
    upstream.add_market(make_market("B", "Fast market"))
    upstream.delays[("fetch_market", "A")] = 0.05

    async def scenario():
        loader = make_context().loader()
        slow = loader.open("A")
        await asyncio.sleep(0)
        fast = loader.open("B")
        results = await asyncio.gather(slow, fast)
        await loader.drain()
        return loader, results

    loader, (slow_result, fast_result) = asyncio.run(scenario())
    assert slow_result is None
    assert fast_result is loader.view
    assert loader.generation == 2
    assert loader.view.market_id == "B"
    assert loader.view.detail.value.title == "Fast market"
    assert loader.view.phase is LoadPhase.SUBRESOURCES_RESOLVED


def test_detail_failure_keeps_shell_and_reports_error(make_context, upstream):
    upstream.catalog = [make_market("m1", "Cached title")]
    upstream.add_market(make_market("m1", "Cached title"))
    upstream.failures[("fetch_market", "m1")] = NetworkError("connection reset")

    async def scenario():
        context = make_context()
        await context.data.catalog()
        return await context.loader().open("m1")

    view = asyncio.run(scenario())
    assert view.shell.title == "Cached title"
    assert view.detail is None
    assert view.error == ViewError(kind="network", message="connection reset")
    assert view.phase is LoadPhase.DETAIL_PENDING
    assert view.title == "Cached title"


def test_rate_limit_is_reported_with_retry_hint(make_context, upstream):
    upstream.add_market(make_market("m1", "Market"))
    upstream.failures[("fetch_market", "m1")] = RateLimitError(30)

    view = asyncio.run(make_context().loader().open("m1"))
    assert view.is_blank
    assert view.error.kind == "rate_limited"
    assert view.error.retry_after == 30


def test_target_outcome_is_selected_optimistically_then_priced(make_context, upstream):
    _seed(upstream)
    selections = []

    def on_change(view):
        if view.selection is not None and (not selections or selections[-1] != view.selection):
            selections.append(view.selection)

    async def scenario():
        loader = make_context().loader(on_change=on_change)
        await loader.open("m1")
        await loader.drain()
        return loader.view

    view = asyncio.run(scenario())
    assert isinstance(selections[0], Pending)
    assert selections[0].value.label == "Alice"
    assert selections[0].value.yes_price_cents == pytest.approx(60.0)
    assert isinstance(view.selection, Resolved)
    assert view.selection.value.id == "m1"
    assert view.selection.value.no_price_cents == pytest.approx(40.0)


def test_reselecting_discards_the_earlier_outcome_detail(make_context, upstream):
    _seed(upstream)

    async def scenario():
        loader = make_context().loader()
        await loader.open("m1")
        await loader.drain()
        alice, bob = loader.view.outcomes.value.outcomes

        upstream.delays[("fetch_market", "m2")] = 0.05
        slow = loader.select_outcome(bob)
        pending = loader.view.selection
        fast = loader.select_outcome(alice)
        await asyncio.gather(slow, fast)
        return pending, loader.view.selection

    pending, final = asyncio.run(scenario())
    assert pending == Pending(pending.value)
    assert pending.value.label == "Bob"
    assert final.value.label == "Alice"
    assert final == Resolved(final.value, from_cache=True)


def test_failed_outcome_detail_keeps_basic_price_as_stale(make_context, upstream):
    _seed(upstream)
    upstream.failures[("fetch_market", "m2")] = NetworkError("offline")

    async def scenario():
        loader = make_context().loader()
        await loader.open("m1")
        await loader.drain()
        bob = loader.view.outcomes.value.outcomes[1]
        await loader.select_outcome(bob)
        return loader.view.selection

    selection = asyncio.run(scenario())
    assert isinstance(selection, Stale)
    assert selection.value.label == "Bob"
    assert selection.value.yes_price_cents == pytest.approx(30.0)


def test_switching_entity_drops_pending_selection(make_context, upstream):
    _seed(upstream)
    upstream.add_market(make_market("solo", "Standalone"))

    async def scenario():
        loader = make_context().loader()
        await loader.open("m1")
        await loader.drain()
        bob = loader.view.outcomes.value.outcomes[1]
        upstream.delays[("fetch_market", "m2")] = 0.05
        selection = loader.select_outcome(bob)
        await loader.open("solo")
        await selection
        return loader.view

    view = asyncio.run(scenario())
    assert view.market_id == "solo"
    assert view.selection is None
