"""Stale-while-revalidate resolution with per-key request deduplication."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from marketsync.domain import Resolved, Stale, Tracked
from marketsync.errors import NetworkError

from .background import BackgroundQueue
from .cache_store import CacheStore

T = TypeVar("T")

Fetcher = Callable[[], Awaitable[T]]


class RequestCoordinator:
    """Guarantees at most one outstanding fetch per cache key.

    A fresh entry is served without touching the network. A stale entry is
    served immediately while a background refresh is queued. A miss joins the
    in-flight request for the key, or starts one.
    """

    def __init__(
        self,
        store: CacheStore,
        *,
        background: BackgroundQueue,
        timeout: float | None = None,
    ) -> None:
        self._store = store
        self._background = background
        self._timeout = timeout
        self._inflight: dict[str, asyncio.Task[Any]] = {}

    @property
    def store(self) -> CacheStore:
        return self._store

    def is_in_flight(self, key: str) -> bool:
        return key in self._inflight

    def in_flight_keys(self) -> tuple[str, ...]:
        return tuple(self._inflight)

    async def resolve(self, key: str, fetcher: Fetcher[T], ttl: float) -> Tracked[T]:
        cached = self._store.get(key)
        if cached is not None and not cached.is_stale:
            return Resolved(cached.data, from_cache=True)
        if cached is not None:
            self.revalidate(key, fetcher, ttl)
            return Stale(cached.data)
        data = await self._join(key, fetcher, ttl)
        return Resolved(data, from_cache=False)

    def revalidate(self, key: str, fetcher: Fetcher[Any], ttl: float) -> None:
        """Refresh ``key`` in the background unless a fetch is already running."""

        if key in self._inflight:
            return
        task = self._dispatch(key, fetcher, ttl)
        self._background.submit(task, name=f"revalidate {key}")

    async def _join(self, key: str, fetcher: Fetcher[T], ttl: float) -> T:
        task = self._inflight.get(key)
        if task is None:
            task = self._dispatch(key, fetcher, ttl)
        else:
            logger.debug("Joining in-flight request for {}", key)
        # Shielded so a cancelled caller does not cancel the shared fetch.
        return await asyncio.shield(task)

    def _dispatch(self, key: str, fetcher: Fetcher[Any], ttl: float) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(self._run(key, fetcher, ttl))
        self._inflight[key] = task
        return task

    async def _run(self, key: str, fetcher: Fetcher[Any], ttl: float) -> Any:
        try:
            try:
                if self._timeout is None:
                    data = await fetcher()
                else:
                    data = await asyncio.wait_for(fetcher(), timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                raise NetworkError(
                    f"Request for {key} timed out after {self._timeout:g}s"
                ) from exc
            self._store.set(key, data, ttl)
            return data
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]
