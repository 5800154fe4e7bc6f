from __future__ import annotations

import asyncio
import json
import sys
from collections import Counter
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from marketsync.core.config import Settings
from marketsync.repositories import MemorySnapshotStorage
from marketsync.services.context import SyncContext


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.current = start

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


def make_market(
    market_id: str,
    question: str,
    *,
    yes: float = 0.5,
    condition_id: str | None = None,
    tokens: tuple[str, ...] | None = None,
    event_id: str | None = None,
    group: str = "",
    volume: float = 1000.0,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": market_id,
        "question": question,
        "conditionId": condition_id if condition_id is not None else f"cond-{market_id}",
        "outcomes": json.dumps(["Yes", "No"]),
        "outcomePrices": json.dumps([str(yes), str(round(1 - yes, 4))]),
        "clobTokenIds": json.dumps(
            list(tokens) if tokens is not None else [f"tok-{market_id}-yes", f"tok-{market_id}-no"]
        ),
        "volumeNum": volume,
        "volume24hr": volume / 10,
        "groupItemTitle": group,
        "active": True,
        "closed": False,
    }
    if event_id is not None:
        payload["events"] = [{"id": event_id, "title": f"Event {event_id}"}]
    return payload


class FakeUpstream:
    """Scripted stand-in for ``PolymarketClient`` that records every call.

    ``delays`` and ``failures`` are keyed by ``(method, argument)``.
    """

    def __init__(self) -> None:
        self.markets: dict[str, dict[str, Any]] = {}
        self.events: dict[str, dict[str, Any]] = {}
        self.catalog: list[dict[str, Any]] = []
        self.search_results: list[dict[str, Any]] = []
        self.trades: dict[str, list[dict[str, Any]]] = {}
        self.calls: Counter[tuple[str, str]] = Counter()
        self.delays: dict[tuple[str, str], float] = {}
        self.failures: dict[tuple[str, str], Exception] = {}
        self.closed = False

    def add_market(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.markets[str(payload["id"])] = payload
        return payload

    def add_event(self, event_id: str, title: str, markets: list[dict[str, Any]]) -> None:
        for market in markets:
            market["events"] = [{"id": event_id, "title": title}]
            self.add_market(market)
        self.events[event_id] = {"id": event_id, "title": title, "markets": markets}

    def count(self, method: str, argument: str | None = None) -> int:
        if argument is None:
            return sum(n for (name, _), n in self.calls.items() if name == method)
        return self.calls[(method, argument)]

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def _record(self, method: str, argument: Any) -> None:
        key = (method, str(argument))
        self.calls[key] += 1
        delay = self.delays.get(key)
        if delay:
            await asyncio.sleep(delay)
        failure = self.failures.get(key)
        if failure is not None:
            raise failure

    async def fetch_market(self, market_id: str) -> Any:
        await self._record("fetch_market", market_id)
        return self.markets[market_id]

    async def fetch_event(self, event_id: str) -> Any:
        await self._record("fetch_event", event_id)
        return self.events[event_id]

    async def fetch_markets(self, *, limit: int, offset: int = 0, **filters: Any) -> Any:
        await self._record("fetch_markets", filters.get("order"))
        return list(self.markets.values())[offset : offset + limit]

    async def iter_catalog(self, **_: Any):
        await self._record("iter_catalog", "")
        for market in self.catalog:
            yield market

    async def fetch_trades(self, condition_id: str, *, limit: int) -> Any:
        await self._record("fetch_trades", condition_id)
        if condition_id in self.trades:
            return self.trades[condition_id][:limit]
        return [
            {"proxyWallet": "0xaaa", "side": "BUY", "size": 100, "price": 0.6, "timestamp": 1_700_000_000},
            {"proxyWallet": "0xbbb", "side": "SELL", "size": 50, "price": 0.4, "timestamp": 1_700_000_100},
            {"proxyWallet": "0xaaa", "side": "BUY", "size": 10, "price": 0.6, "timestamp": 1_700_000_200},
        ][:limit]

    async def fetch_order_book(self, token_id: str) -> Any:
        await self._record("fetch_order_book", token_id)
        return {
            "bids": [{"price": "0.58", "size": "120"}, {"price": "0.60", "size": "40"}],
            "asks": [{"price": "0.64", "size": "75"}, {"price": "0.62", "size": "30"}],
        }

    async def fetch_price_history(self, token_id: str, *, interval: str = "1d") -> Any:
        await self._record("fetch_price_history", token_id)
        return {"history": [{"t": 1_700_000_000, "p": 0.55}, {"t": 1_700_003_600, "p": 0.6}]}

    async def fetch_holders(self, condition_id: str, *, limit: int) -> Any:
        await self._record("fetch_holders", condition_id)
        return [
            {
                "token": "tok-yes",
                "holders": [
                    {"proxyWallet": "0xccc", "amount": 900, "outcomeIndex": 0, "name": "whale"},
                    {"proxyWallet": "0xddd", "amount": 300, "outcomeIndex": 0},
                ],
            }
        ]

    async def search(self, query: str, *, limit: int) -> Any:
        await self._record("search", query)
        return {"events": self.search_results[:limit]}

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def sample_market_payload() -> dict[str, object]:
    path = Path(__file__).parent / "data" / "sample_market.json"
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        snapshot_database_url=f"sqlite:///{tmp_path/'marketsync.db'}",
        request_timeout_seconds=5.0,
        prefetch_hover_delay_seconds=0.01,
        egress_proxies=[],
        proxy_base_url=None,
    )
    monkeypatch.setattr("marketsync.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("marketsync.core.config.settings", settings)
    return settings


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def storage() -> MemorySnapshotStorage:
    return MemorySnapshotStorage()


@pytest.fixture
def make_context(test_settings, upstream, storage, clock):
    """Build a fresh ``SyncContext`` wired to the fake upstream and memory storage."""

    def build(**overrides: Any) -> SyncContext:
        config = test_settings.model_copy(update=overrides) if overrides else test_settings
        return SyncContext.build(config, client=upstream, storage=storage, clock=clock)

    return build
