"""Durable snapshots of cached datasets with per-dataset expiry windows."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from marketsync.core.clock import Clock, SystemClock
from marketsync.core.config import Settings, settings as default_settings
from marketsync.domain import MarketDetail, MarketSummary, SearchHistoryItem
from marketsync.repositories import SnapshotStorage
from marketsync.schemas import SnapshotEnvelope

_SUMMARIES = TypeAdapter(tuple[MarketSummary, ...])
_DETAIL = TypeAdapter(MarketDetail)
_HISTORY = TypeAdapter(tuple[SearchHistoryItem, ...])


@dataclass(frozen=True, slots=True)
class Dataset:
    """A tracked snapshot key; ``ttl=None`` means the snapshot never expires."""

    key: str
    ttl: float | None
    adapter: TypeAdapter


@dataclass(frozen=True, slots=True)
class Snapshot:
    items: Any
    timestamp: float


def market_list_dataset(timeframe: str, *, config: Settings | None = None) -> Dataset:
    config = config or default_settings
    return Dataset(
        key=f"marketsync:markets:{timeframe}",
        ttl=config.snapshot_ttl_market_list,
        adapter=_SUMMARIES,
    )


def catalog_dataset(*, config: Settings | None = None) -> Dataset:
    config = config or default_settings
    return Dataset(
        key="marketsync:all_markets",
        ttl=config.snapshot_ttl_catalog,
        adapter=_SUMMARIES,
    )


def market_detail_dataset(market_id: str, *, config: Settings | None = None) -> Dataset:
    config = config or default_settings
    return Dataset(
        key=f"marketsync:market_detail:{market_id}",
        ttl=config.snapshot_ttl_market_detail,
        adapter=_DETAIL,
    )


def search_history_dataset() -> Dataset:
    return Dataset(key="marketsync:search_history", ttl=None, adapter=_HISTORY)


class PersistentCache:
    """Reads and writes ``{items, timestamp}`` envelopes through a storage backend.

    Loading never feeds the in-memory cache by itself; warm starts are an
    explicit step taken by the caller.
    """

    def __init__(self, storage: SnapshotStorage, *, clock: Clock | None = None) -> None:
        self._storage = storage
        self._clock = clock or SystemClock()

    def load(self, dataset: Dataset) -> Snapshot | None:
        raw = self._storage.get_item(dataset.key)
        if raw is None:
            return None
        try:
            envelope = SnapshotEnvelope.model_validate_json(raw)
            items = dataset.adapter.validate_python(envelope.items)
        except ValidationError as exc:
            logger.warning("Discarding unreadable snapshot {}: {}", dataset.key, exc)
            self.remove(dataset)
            return None

        if dataset.ttl is not None:
            age = self._clock.now() - envelope.timestamp
            if age >= dataset.ttl:
                logger.debug(
                    "Snapshot {} expired ({:.0f}s old, window {:.0f}s)",
                    dataset.key,
                    age,
                    dataset.ttl,
                )
                return None
        return Snapshot(items=items, timestamp=envelope.timestamp)

    def save(self, dataset: Dataset, items: Any, *, timestamp: float | None = None) -> bool:
        """Write a fresh envelope; storage failures are logged and reported as ``False``."""

        envelope = SnapshotEnvelope(
            items=dataset.adapter.dump_python(items, mode="json"),
            timestamp=self._clock.now() if timestamp is None else timestamp,
        )
        try:
            self._storage.set_item(dataset.key, envelope.model_dump_json())
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Could not persist snapshot {}: {}", dataset.key, exc)
            return False
        return True

    def remove(self, dataset: Dataset) -> bool:
        try:
            self._storage.remove_item(dataset.key)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Could not remove snapshot {}: {}", dataset.key, exc)
            return False
        return True
