"""Recently opened markets, persisted on every change."""

from __future__ import annotations

from loguru import logger

from marketsync.core.clock import Clock, SystemClock
from marketsync.domain import MarketSummary, SearchHistoryItem

from .persistent_cache import PersistentCache, search_history_dataset

MIN_LIMIT = 5
MAX_LIMIT = 10


class SearchHistory:
    """Most-recent-first list, unique by market id and capped at ``limit``."""

    def __init__(
        self,
        persistent: PersistentCache,
        *,
        limit: int = MIN_LIMIT,
        clock: Clock | None = None,
    ) -> None:
        if not MIN_LIMIT <= limit <= MAX_LIMIT:
            raise ValueError(f"limit must be between {MIN_LIMIT} and {MAX_LIMIT}")
        self._persistent = persistent
        self._dataset = search_history_dataset()
        self._limit = limit
        self._clock = clock or SystemClock()
        self._items: list[SearchHistoryItem] = self._load()

    def _load(self) -> list[SearchHistoryItem]:
        snapshot = self._persistent.load(self._dataset)
        if snapshot is None:
            return []
        items = list(snapshot.items)
        if len(items) > self._limit:
            logger.debug("Trimming persisted search history from {} to {}", len(items), self._limit)
            items = items[: self._limit]
            self._persist(items)
        return items

    def _persist(self, items: list[SearchHistoryItem]) -> None:
        self._persistent.save(self._dataset, tuple(items))

    @property
    def items(self) -> tuple[SearchHistoryItem, ...]:
        return tuple(self._items)

    def add(self, item: SearchHistoryItem) -> tuple[SearchHistoryItem, ...]:
        remaining = [existing for existing in self._items if existing.id != item.id]
        self._items = [item, *remaining][: self._limit]
        self._persist(self._items)
        return self.items

    def record(self, market: MarketSummary) -> tuple[SearchHistoryItem, ...]:
        return self.add(
            SearchHistoryItem(
                id=market.id,
                name=market.title,
                probability=market.probability,
                volume=market.volume_usd,
                timestamp=self._clock.now(),
            )
        )

    def remove(self, market_id: str) -> tuple[SearchHistoryItem, ...]:
        self._items = [item for item in self._items if item.id != market_id]
        self._persist(self._items)
        return self.items

    def clear(self) -> None:
        self._items = []
        self._persistent.remove(self._dataset)

    def __len__(self) -> int:
        return len(self._items)
