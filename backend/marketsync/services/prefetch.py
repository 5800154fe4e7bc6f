"""Fire-and-forget cache warm-up for markets the user is likely to open."""

from __future__ import annotations

import asyncio
import itertools
from typing import Iterable

from loguru import logger

from marketsync.core.config import Settings, settings as default_settings

from .background import BackgroundQueue
from .market_data import TIMEFRAMES, MarketDataService


class PrefetchScheduler:
    """Warms every endpoint a detail view needs, at most once per market.

    A market stays marked as requested after a successful batch so hover and
    viewport triggers do not repeat the work. A failed batch drops the mark
    so a later trigger can retry, but only while the mark is still its own:
    after an invalidate and a fresh trigger the newer batch owns it.
    """

    def __init__(
        self,
        data: MarketDataService,
        *,
        background: BackgroundQueue,
        config: Settings | None = None,
    ) -> None:
        self._data = data
        self._background = background
        self._settings = config or default_settings
        self._requested: dict[str, int] = {}
        self._batch_ids = itertools.count(1)
        self._hover_timers: dict[str, asyncio.TimerHandle] = {}

    @property
    def requested(self) -> frozenset[str]:
        return frozenset(self._requested)

    def is_requested(self, market_id: str) -> bool:
        return market_id in self._requested

    def prefetch(self, market_id: str) -> asyncio.Task | None:
        if market_id in self._requested:
            return None
        batch_id = next(self._batch_ids)
        self._requested[market_id] = batch_id
        return self._background.submit(
            self._run_batch(market_id, batch_id), name=f"prefetch {market_id}"
        )

    def prefetch_many(self, market_ids: Iterable[str]) -> list[asyncio.Task]:
        tasks = [self.prefetch(market_id) for market_id in market_ids]
        return [task for task in tasks if task is not None]

    async def _run_batch(self, market_id: str, batch_id: int) -> None:
        data = self._data
        try:
            detail, *_ = await asyncio.gather(
                data.market_detail(market_id),
                data.recent_trades(market_id),
                data.outcomes_list(market_id),
                data.price_history(market_id),
            )
            dependents = []
            token_id = detail.value.primary_token_id
            condition_id = detail.value.condition_id
            if token_id:
                dependents.append(data.order_book(token_id))
            if condition_id:
                dependents.extend(
                    (
                        data.traders_count(condition_id),
                        data.top_holders(condition_id),
                        data.top_traders(condition_id),
                    )
                )
            await asyncio.gather(*dependents)
        except Exception:
            if self._requested.get(market_id) == batch_id:
                del self._requested[market_id]
            raise
        logger.debug("Prefetched market {}", market_id)

    def on_hover(self, market_id: str) -> None:
        """Start the hover delay; the prefetch fires unless the pointer leaves first."""

        if market_id in self._requested or market_id in self._hover_timers:
            return
        loop = asyncio.get_running_loop()
        self._hover_timers[market_id] = loop.call_later(
            self._settings.prefetch_hover_delay_seconds, self._hover_elapsed, market_id
        )

    def on_hover_end(self, market_id: str) -> None:
        handle = self._hover_timers.pop(market_id, None)
        if handle is not None:
            handle.cancel()

    def _hover_elapsed(self, market_id: str) -> None:
        self._hover_timers.pop(market_id, None)
        self.prefetch(market_id)

    def on_viewport_enter(self, market_ids: Iterable[str]) -> list[asyncio.Task]:
        return self.prefetch_many(market_ids)

    def prefetch_other_timeframes(self, current: str) -> list[asyncio.Task]:
        return [
            self._background.submit(
                self._data.market_list(timeframe), name=f"prefetch list {timeframe}"
            )
            for timeframe in TIMEFRAMES
            if timeframe != current
        ]

    def invalidate(self, market_id: str) -> None:
        """Forget that ``market_id`` was prefetched and drop its cached data."""

        self._requested.pop(market_id, None)
        self.on_hover_end(market_id)
        self._data.invalidate_entity(market_id)

    def clear(self) -> None:
        self._requested.clear()
        for handle in self._hover_timers.values():
            handle.cancel()
        self._hover_timers.clear()
