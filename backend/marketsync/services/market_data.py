"""Binds upstream endpoints to cache keys, TTLs and the request coordinator."""

from __future__ import annotations

import dataclasses
from typing import Callable, Sequence, TypeVar

from loguru import logger

from marketsync.core.config import Settings, settings as default_settings
from marketsync.domain import (
    Holder,
    MarketDetail,
    MarketShell,
    MarketSummary,
    OrderBook,
    OutcomeDetail,
    OutcomesList,
    PricePoint,
    Trade,
    TraderStat,
    TraderSummary,
    Tracked,
)
from marketsync.errors import CacheMiss
from upstream.client import PolymarketClient
from upstream.normalize import (
    normalize_catalog_entries,
    normalize_holders,
    normalize_market_detail,
    normalize_order_book,
    normalize_outcome_detail,
    normalize_outcomes,
    normalize_price_history,
    normalize_search_results,
    normalize_trades,
    summarize_traders,
)

from .cache_store import CachedValue, CacheStore
from .coordinator import RequestCoordinator
from .persistent_cache import (
    PersistentCache,
    catalog_dataset,
    market_detail_dataset,
    market_list_dataset,
)
from .search_index import SearchHit, SearchIndex

TIMEFRAMES = ("24h", "7d", "1m")
DEFAULT_LIST_LIMIT = 100
ACTIVITY_SAMPLE_SIZE = 500

_TIMEFRAME_ORDER = {
    "24h": "volume24hr",
    "7d": "volume1wk",
    "1m": "volume1mo",
}

CATALOG_KEY = "markets:catalog"

T = TypeVar("T")
U = TypeVar("U")


def _map_tracked(tracked: Tracked[T], transform: Callable[[T], U]) -> Tracked[U]:
    return dataclasses.replace(tracked, value=transform(tracked.value))


def market_list_key(timeframe: str, limit: int, offset: int) -> str:
    return f"markets:list:{timeframe}:{limit}:{offset}"


def entity_prefix(market_id: str) -> str:
    return f"market:{market_id}:"


def detail_key(market_id: str) -> str:
    return f"{entity_prefix(market_id)}detail"


def trades_key(market_id: str, limit: int) -> str:
    return f"{entity_prefix(market_id)}trades:{limit}"


def outcomes_key(market_id: str) -> str:
    return f"{entity_prefix(market_id)}outcomes"


def outcome_detail_key(outcome_id: str) -> str:
    return f"{entity_prefix(outcome_id)}outcome"


def price_history_key(market_id: str, interval: str) -> str:
    return f"{entity_prefix(market_id)}history:{interval}"


def order_book_key(token_id: str) -> str:
    return f"book:{token_id}"


def activity_key(condition_id: str) -> str:
    return f"activity:{condition_id}"


def holders_key(condition_id: str, limit: int) -> str:
    return f"holders:{condition_id}:{limit}"


def remote_search_key(query: str, limit: int) -> str:
    return f"search:{query.strip().lower()}:{limit}"


class MarketDataService:
    """Every read of upstream data goes through here and is cached per key."""

    def __init__(
        self,
        client: PolymarketClient,
        coordinator: RequestCoordinator,
        *,
        index: SearchIndex,
        persistent: PersistentCache,
        config: Settings | None = None,
    ) -> None:
        self.client = client
        self.coordinator = coordinator
        self.index = index
        self.persistent = persistent
        self.settings = config or default_settings

    @property
    def store(self) -> CacheStore:
        return self.coordinator.store

    # Listings and catalog

    async def market_list(
        self,
        timeframe: str = "24h",
        *,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> Tracked[tuple[MarketSummary, ...]]:
        if timeframe not in _TIMEFRAME_ORDER:
            raise ValueError(f"Unsupported timeframe '{timeframe}'")

        async def fetch() -> tuple[MarketSummary, ...]:
            payload = await self.client.fetch_markets(
                limit=limit,
                offset=offset,
                active=True,
                closed=False,
                order=_TIMEFRAME_ORDER[timeframe],
                ascending=False,
            )
            markets = normalize_catalog_entries(payload if isinstance(payload, list) else [])
            if offset == 0 and limit == DEFAULT_LIST_LIMIT:
                self.persistent.save(market_list_dataset(timeframe, config=self.settings), markets)
            logger.info("Fetched {} markets for timeframe {}", len(markets), timeframe)
            return markets

        return await self.coordinator.resolve(
            market_list_key(timeframe, limit, offset), fetch, self.settings.ttl_market_list
        )

    async def catalog(self) -> Tracked[tuple[MarketSummary, ...]]:
        async def fetch() -> tuple[MarketSummary, ...]:
            raw = [market async for market in self.client.iter_catalog()]
            markets = normalize_catalog_entries(raw)
            self.index.replace(markets)
            self.persistent.save(catalog_dataset(config=self.settings), markets)
            logger.info("Catalog refreshed with {} markets", len(markets))
            return markets

        result = await self.coordinator.resolve(CATALOG_KEY, fetch, self.settings.ttl_catalog)
        if not len(self.index):
            self.index.replace(result.value)
        return result

    # Entity detail and its dependents

    async def market_detail(self, market_id: str) -> Tracked[MarketDetail]:
        async def fetch() -> MarketDetail:
            detail = normalize_market_detail(await self.client.fetch_market(market_id))
            self.persistent.save(market_detail_dataset(market_id, config=self.settings), detail)
            return detail

        return await self.coordinator.resolve(
            detail_key(market_id), fetch, self.settings.ttl_market_detail
        )

    async def _detail_value(self, market_id: str) -> MarketDetail:
        return (await self.market_detail(market_id)).value

    async def recent_trades(
        self, market_id: str, *, limit: int | None = None
    ) -> Tracked[tuple[Trade, ...]]:
        limit = limit or self.settings.detail_trades_limit

        async def fetch() -> tuple[Trade, ...]:
            detail = await self._detail_value(market_id)
            if not detail.condition_id:
                return ()
            return normalize_trades(await self.client.fetch_trades(detail.condition_id, limit=limit))

        return await self.coordinator.resolve(
            trades_key(market_id, limit), fetch, self.settings.ttl_trades
        )

    async def outcomes_list(self, market_id: str) -> Tracked[OutcomesList]:
        async def fetch() -> OutcomesList:
            detail = await self._detail_value(market_id)
            if not detail.event_id:
                return OutcomesList(event_id="", title=detail.event_title or detail.title)
            payload = await self.client.fetch_event(detail.event_id)
            return normalize_outcomes(payload, target_market_id=market_id)

        return await self.coordinator.resolve(
            outcomes_key(market_id), fetch, self.settings.ttl_outcomes
        )

    async def outcome_detail(self, outcome_id: str) -> Tracked[OutcomeDetail]:
        async def fetch() -> OutcomeDetail:
            return normalize_outcome_detail(await self.client.fetch_market(outcome_id))

        return await self.coordinator.resolve(
            outcome_detail_key(outcome_id), fetch, self.settings.ttl_outcome_detail
        )

    async def price_history(
        self, market_id: str, *, interval: str = "1d"
    ) -> Tracked[tuple[PricePoint, ...]]:
        async def fetch() -> tuple[PricePoint, ...]:
            detail = await self._detail_value(market_id)
            if detail.primary_token_id is None:
                return ()
            payload = await self.client.fetch_price_history(
                detail.primary_token_id, interval=interval
            )
            return normalize_price_history(payload)

        return await self.coordinator.resolve(
            price_history_key(market_id, interval), fetch, self.settings.ttl_price_history
        )

    async def order_book(self, token_id: str) -> Tracked[OrderBook]:
        async def fetch() -> OrderBook:
            return normalize_order_book(await self.client.fetch_order_book(token_id))

        return await self.coordinator.resolve(
            order_book_key(token_id), fetch, self.settings.ttl_order_book
        )

    async def _activity(self, condition_id: str) -> Tracked[TraderSummary]:
        async def fetch() -> TraderSummary:
            payload = await self.client.fetch_trades(condition_id, limit=ACTIVITY_SAMPLE_SIZE)
            return summarize_traders(normalize_trades(payload), limit=self.settings.holders_limit)

        return await self.coordinator.resolve(
            activity_key(condition_id), fetch, self.settings.ttl_holders
        )

    async def traders_count(self, condition_id: str) -> Tracked[int]:
        tracked = await self._activity(condition_id)
        return _map_tracked(tracked, lambda summary: summary.count)

    async def top_traders(
        self, condition_id: str, *, limit: int | None = None
    ) -> Tracked[tuple[TraderStat, ...]]:
        limit = limit or self.settings.holders_limit
        tracked = await self._activity(condition_id)
        return _map_tracked(tracked, lambda summary: summary.top[:limit])

    async def top_holders(
        self, condition_id: str, *, limit: int | None = None
    ) -> Tracked[tuple[Holder, ...]]:
        limit = limit or self.settings.holders_limit

        async def fetch() -> tuple[Holder, ...]:
            payload = await self.client.fetch_holders(condition_id, limit=limit)
            return normalize_holders(payload, limit=limit)

        return await self.coordinator.resolve(
            holders_key(condition_id, limit), fetch, self.settings.ttl_holders
        )

    # Search

    async def remote_search(
        self, query: str, *, limit: int | None = None
    ) -> Tracked[tuple[MarketSummary, ...]]:
        limit = limit or self.settings.search_default_limit

        async def fetch() -> tuple[MarketSummary, ...]:
            return normalize_search_results(await self.client.search(query.strip(), limit=limit))

        return await self.coordinator.resolve(
            remote_search_key(query, limit), fetch, self.settings.ttl_remote_search
        )

    async def search(self, query: str, *, limit: int | None = None) -> list[SearchHit]:
        limit = limit or self.settings.search_default_limit

        async def remote(text: str, size: int) -> Sequence[MarketSummary]:
            return (await self.remote_search(text, limit=size)).value

        return await self.index.search_with_fallback(query, limit, remote)

    # Synchronous cache views

    def peek(self, key: str) -> CachedValue | None:
        return self.store.get(key)

    def shell(self, market_id: str) -> MarketShell:
        """Cached first-paint data for ``market_id``; raises :class:`CacheMiss`."""

        cached = self.store.get(detail_key(market_id))
        if cached is not None:
            return cached.data.to_shell()

        summary = self.index.get(market_id)
        if summary is None:
            summary = self._summary_from_lists(market_id)
        if summary is None:
            raise CacheMiss(detail_key(market_id))
        return MarketShell.from_summary(summary)

    def _summary_from_lists(self, market_id: str) -> MarketSummary | None:
        for key in self.store.keys():
            if not key.startswith("markets:list:"):
                continue
            entry = self.store.entry(key)
            for market in entry.data if entry is not None else ():
                if market.id == market_id:
                    return market
        return None

    def invalidate_entity(self, market_id: str) -> int:
        """Evict everything cached for ``market_id``, including its durable detail."""

        removed = 0
        entry = self.store.entry(detail_key(market_id))
        if entry is not None:
            detail: MarketDetail = entry.data
            for token_id in detail.clob_token_ids:
                removed += int(self.store.delete(order_book_key(token_id)))
            if detail.condition_id:
                removed += int(self.store.delete(activity_key(detail.condition_id)))
                removed += self.store.delete_prefix(f"holders:{detail.condition_id}:")
        removed += self.store.delete_prefix(entity_prefix(market_id))
        self.persistent.remove(market_detail_dataset(market_id, config=self.settings))
        logger.debug("Invalidated {} cache entries for market {}", removed, market_id)
        return removed

    def warm_start(self, market_ids: Sequence[str] = ()) -> int:
        """Seed the in-memory cache from durable snapshots that are still valid.

        Restored entries keep their original fetch time, so most of them come
        back already stale and are refreshed on first use.
        """

        restored = 0
        for timeframe in TIMEFRAMES:
            snapshot = self.persistent.load(market_list_dataset(timeframe, config=self.settings))
            if snapshot is None:
                continue
            self.store.restore(
                market_list_key(timeframe, DEFAULT_LIST_LIMIT, 0),
                snapshot.items,
                self.settings.ttl_market_list,
                fetched_at=snapshot.timestamp,
            )
            restored += 1

        snapshot = self.persistent.load(catalog_dataset(config=self.settings))
        if snapshot is not None:
            self.store.restore(
                CATALOG_KEY, snapshot.items, self.settings.ttl_catalog, fetched_at=snapshot.timestamp
            )
            self.index.replace(snapshot.items)
            restored += 1

        for market_id in market_ids:
            snapshot = self.persistent.load(market_detail_dataset(market_id, config=self.settings))
            if snapshot is None:
                continue
            self.store.restore(
                detail_key(market_id),
                snapshot.items,
                self.settings.ttl_market_detail,
                fetched_at=snapshot.timestamp,
            )
            restored += 1

        logger.info("Warm start restored {} snapshots", restored)
        return restored
