"""Staged loading of a single market's detail view."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from loguru import logger

from marketsync.domain import (
    Holder,
    MarketDetail,
    MarketShell,
    OrderBook,
    OutcomeListItem,
    OutcomeSelection,
    OutcomesList,
    Pending,
    Resolved,
    Stale,
    Trade,
    TraderStat,
    Tracked,
)
from marketsync.errors import (
    CacheMiss,
    MarketSyncError,
    NetworkError,
    ParseError,
    RateLimitError,
    UpstreamError,
)

from .market_data import MarketDataService


class LoadPhase(str, Enum):
    SHELL_ONLY = "shell_only"
    DETAIL_PENDING = "detail_pending"
    DETAIL_RESOLVED = "detail_resolved"
    SUBRESOURCES_PENDING = "subresources_pending"
    SUBRESOURCES_RESOLVED = "subresources_resolved"


@dataclass(frozen=True, slots=True)
class ViewError:
    kind: str  # network | upstream | rate_limited | parse
    message: str
    retry_after: float | None = None

    @classmethod
    def from_exception(cls, exc: MarketSyncError) -> "ViewError":
        if isinstance(exc, RateLimitError):
            return cls(kind="rate_limited", message=str(exc), retry_after=exc.retry_after)
        if isinstance(exc, UpstreamError):
            return cls(kind="upstream", message=str(exc))
        if isinstance(exc, ParseError):
            return cls(kind="parse", message=str(exc))
        if isinstance(exc, NetworkError):
            return cls(kind="network", message=str(exc))
        return cls(kind="upstream", message=str(exc))


@dataclass(slots=True)
class EntityView:
    """What the detail screen renders; mutated only by :class:`PhasedLoader`."""

    market_id: str
    phase: LoadPhase
    shell: MarketShell | None = None
    detail: Tracked[MarketDetail] | None = None
    outcomes: Tracked[OutcomesList] | None = None
    trades: Tracked[tuple[Trade, ...]] | None = None
    order_book: Tracked[OrderBook] | None = None
    traders_count: Tracked[int] | None = None
    holders: Tracked[tuple[Holder, ...]] | None = None
    top_traders: Tracked[tuple[TraderStat, ...]] | None = None
    selection: Tracked[OutcomeSelection] | None = None
    error: ViewError | None = None
    subresource_errors: dict[str, ViewError] = field(default_factory=dict)

    @property
    def title(self) -> str | None:
        if self.detail is not None:
            return self.detail.value.title
        return self.shell.title if self.shell is not None else None

    @property
    def is_blank(self) -> bool:
        return self.shell is None and self.detail is None


def _is_empty(value: Any) -> bool:
    if isinstance(value, OrderBook):
        return value.is_empty
    if isinstance(value, tuple):
        return not value
    return False


class PhasedLoader:
    """Loads one market at a time: cached shell, then detail, then dependents.

    Each :meth:`open` bumps a generation counter. Every asynchronous result
    carries the generation it was dispatched under and is dropped if the
    user has moved on to another market since. Outcome selection uses its
    own counter so re-selecting mid-flight drops the earlier detail.
    """

    def __init__(
        self,
        data: MarketDataService,
        *,
        on_change: Callable[[EntityView], None] | None = None,
    ) -> None:
        self._data = data
        self._on_change = on_change
        self._generation = 0
        self._selection_generation = 0
        self._tasks: set[asyncio.Task[Any]] = set()
        self.view: EntityView | None = None

    @property
    def generation(self) -> int:
        return self._generation

    def open(self, market_id: str) -> asyncio.Task[EntityView | None]:
        self._generation += 1
        self._selection_generation += 1
        generation = self._generation

        try:
            shell = self._data.shell(market_id)
        except CacheMiss:
            shell = None
        self.view = EntityView(
            market_id=market_id,
            phase=LoadPhase.SHELL_ONLY if shell is not None else LoadPhase.DETAIL_PENDING,
            shell=shell,
        )
        self._notify()
        return self._spawn(self._load(market_id, generation))

    def select_outcome(self, item: OutcomeListItem) -> asyncio.Task[EntityView | None]:
        """Show list-level prices at once, then replace them with the priced detail."""

        self._selection_generation += 1
        selection_generation = self._selection_generation
        generation = self._generation
        basic = OutcomeSelection.from_list_item(item)
        self._merge(generation, selection=Pending(basic))
        return self._spawn(self._load_selection(item, basic, generation, selection_generation))

    async def drain(self) -> None:
        """Wait for every load and selection started so far, including follow-ups."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, work: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(work)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _notify(self) -> None:
        if self._on_change is not None and self.view is not None:
            self._on_change(self.view)

    def _is_current(self, generation: int, what: str) -> bool:
        if generation == self._generation:
            return True
        logger.debug("Discarding {} from superseded load generation {}", what, generation)
        return False

    def _merge(self, generation: int, **changes: Any) -> bool:
        if self.view is None or not self._is_current(generation, ", ".join(changes)):
            return False
        for name, value in changes.items():
            setattr(self.view, name, value)
        self._notify()
        return True

    async def _load(self, market_id: str, generation: int) -> EntityView | None:
        self._merge(generation, phase=LoadPhase.DETAIL_PENDING)

        side_loads = [
            asyncio.ensure_future(
                self._load_part(generation, "outcomes", self._data.outcomes_list(market_id))
            ),
            asyncio.ensure_future(
                self._load_part(generation, "trades", self._data.recent_trades(market_id))
            ),
        ]
        detail = await self._load_detail(market_id, generation)

        if detail is not None and self._merge(generation, phase=LoadPhase.SUBRESOURCES_PENDING):
            dependents = []
            if detail.primary_token_id:
                dependents.append(
                    self._load_part(
                        generation, "order_book", self._data.order_book(detail.primary_token_id)
                    )
                )
            if detail.condition_id:
                dependents.extend(
                    (
                        self._load_part(
                            generation,
                            "traders_count",
                            self._data.traders_count(detail.condition_id),
                        ),
                        self._load_part(
                            generation, "holders", self._data.top_holders(detail.condition_id)
                        ),
                        self._load_part(
                            generation,
                            "top_traders",
                            self._data.top_traders(detail.condition_id),
                        ),
                    )
                )
            await asyncio.gather(*dependents, *side_loads)
            self._merge(generation, phase=LoadPhase.SUBRESOURCES_RESOLVED)
        else:
            await asyncio.gather(*side_loads)

        return self.view if generation == self._generation else None

    async def _load_detail(self, market_id: str, generation: int) -> MarketDetail | None:
        try:
            tracked = await self._data.market_detail(market_id)
        except MarketSyncError as exc:
            logger.warning("Loading market {} failed: {}", market_id, exc)
            self._merge(generation, error=ViewError.from_exception(exc))
            return None
        if not self._merge(generation, detail=tracked, phase=LoadPhase.DETAIL_RESOLVED):
            return None
        return tracked.value

    async def _load_part(
        self, generation: int, name: str, request: Awaitable[Tracked[Any]]
    ) -> None:
        try:
            tracked = await request
        except MarketSyncError as exc:
            logger.warning("Loading {} failed: {}", name, exc)
            if self._is_current(generation, name) and self.view is not None:
                self.view.subresource_errors[name] = ViewError.from_exception(exc)
                self._notify()
            return

        if not self._is_current(generation, name) or self.view is None:
            return
        if _is_empty(tracked.value) and getattr(self.view, name) is not None:
            return
        self._merge(generation, **{name: tracked})

        if name == "outcomes":
            self._auto_select(tracked.value)

    def _auto_select(self, outcomes: OutcomesList) -> None:
        if self.view is None or self.view.selection is not None:
            return
        target = outcomes.target
        if outcomes.is_multi_outcome and target is not None:
            self.select_outcome(target)

    async def _load_selection(
        self,
        item: OutcomeListItem,
        basic: OutcomeSelection,
        generation: int,
        selection_generation: int,
    ) -> EntityView | None:
        try:
            tracked = await self._data.outcome_detail(item.id)
        except MarketSyncError as exc:
            logger.warning("Loading outcome {} failed: {}", item.id, exc)
            if selection_generation == self._selection_generation:
                self._merge(generation, selection=Stale(basic))
            return self.view

        if selection_generation != self._selection_generation:
            logger.debug("Discarding detail for outcome {} after re-selection", item.id)
            return self.view

        selection = OutcomeSelection.from_detail(tracked.value)
        if isinstance(tracked, Stale):
            value: Tracked[OutcomeSelection] = Stale(selection)
        else:
            value = Resolved(selection, from_cache=tracked.from_cache)
        self._merge(generation, selection=value)
        return self.view
