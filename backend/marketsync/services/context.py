from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from loguru import logger

from marketsync.core.clock import Clock, SystemClock
from marketsync.core.config import Settings, settings as default_settings
from marketsync.db import build_session_factory
from marketsync.repositories import SnapshotStorage, SqlSnapshotStorage
from marketsync.schemas import CacheStats
from upstream.client import PolymarketClient

from .background import BackgroundQueue
from .cache_store import CacheStore
from .coordinator import RequestCoordinator
from .market_data import MarketDataService
from .persistent_cache import PersistentCache
from .phased_loader import EntityView, PhasedLoader
from .prefetch import PrefetchScheduler
from .search_history import SearchHistory
from .search_index import SearchIndex


@dataclass
class SyncContext:
    """Holds the one instance of each shared sync component for a session."""

    settings: Settings
    client: PolymarketClient
    store: CacheStore
    background: BackgroundQueue
    coordinator: RequestCoordinator
    persistent: PersistentCache
    index: SearchIndex
    history: SearchHistory
    data: MarketDataService
    prefetch: PrefetchScheduler

    @classmethod
    def build(
        cls,
        config: Settings | None = None,
        *,
        client: PolymarketClient | None = None,
        storage: SnapshotStorage | None = None,
        clock: Clock | None = None,
    ) -> "SyncContext":
        config = config or default_settings
        clock = clock or SystemClock()
        client = client or PolymarketClient(config=config)
        if storage is None:
            storage = SqlSnapshotStorage(build_session_factory(config.snapshot_database_url))

        store = CacheStore(clock=clock, max_entries=config.cache_max_entries)
        background = BackgroundQueue()
        coordinator = RequestCoordinator(
            store, background=background, timeout=config.request_timeout_seconds
        )
        persistent = PersistentCache(storage, clock=clock)
        index = SearchIndex()
        history = SearchHistory(persistent, limit=config.search_history_limit, clock=clock)
        data = MarketDataService(
            client,
            coordinator,
            index=index,
            persistent=persistent,
            config=config,
        )
        prefetch = PrefetchScheduler(data, background=background, config=config)
        logger.debug("Sync context ready for {} environment", config.environment)
        return cls(
            settings=config,
            client=client,
            store=store,
            background=background,
            coordinator=coordinator,
            persistent=persistent,
            index=index,
            history=history,
            data=data,
            prefetch=prefetch,
        )

    def loader(self, on_change: Callable[[EntityView], None] | None = None) -> PhasedLoader:
        return PhasedLoader(self.data, on_change=on_change)

    def stats(self) -> CacheStats:
        return CacheStats(
            **self.store.stats(),
            in_flight=len(self.coordinator.in_flight_keys()),
            catalog_size=len(self.index),
            prefetched=len(self.prefetch.requested),
        )

    def clear_cache(self) -> None:
        """Drop in-memory entries and prefetch marks; durable snapshots are kept."""

        self.store.clear()
        self.prefetch.clear()

    async def aclose(self) -> None:
        self.prefetch.clear()
        await self.background.cancel_all()
        await self.client.aclose()
