"""Typed domain representations shared by the fetcher, the caches and the views."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Immutable cache record; a new write replaces the whole entry."""

    key: str
    data: Any
    fetched_at: float
    stale_at: float

    def __post_init__(self) -> None:
        if self.stale_at < self.fetched_at:
            raise ValueError("stale_at must not precede fetched_at")

    def is_stale(self, now: float) -> bool:
        return now > self.stale_at


@dataclass(frozen=True, slots=True)
class MarketSummary:
    """Lightweight catalog row used by listings and the search index."""

    id: str
    title: str
    probability: float = 50.0
    volume_usd: float = 0.0
    volume_24h: float = 0.0
    volume_7d: float = 0.0
    volume_1mo: float = 0.0
    image: str | None = None
    status: str = "active"
    slug: str = ""
    event_title: str = ""
    group_title: str = ""


@dataclass(frozen=True, slots=True)
class MarketShell:
    """Minimal snapshot sufficient for a first paint of the detail view."""

    id: str
    title: str
    image: str | None = None
    probability: float = 50.0
    outcomes: tuple[str, ...] = ("Yes", "No")
    outcome_prices: tuple[float, ...] = (0.5, 0.5)

    @classmethod
    def from_summary(cls, summary: MarketSummary) -> "MarketShell":
        yes = summary.probability / 100
        return cls(
            id=summary.id,
            title=summary.title,
            image=summary.image,
            probability=summary.probability,
            outcome_prices=(yes, 1 - yes),
        )


@dataclass(frozen=True, slots=True)
class MarketDetail(MarketSummary):
    """Full market view; superseded (never merged) by later fetches."""

    description: str = ""
    outcomes: tuple[str, ...] = ("Yes", "No")
    outcome_prices: tuple[float, ...] = (0.5, 0.5)
    condition_id: str = ""
    clob_token_ids: tuple[str, ...] = ()
    end_date: datetime | None = None
    event_id: str | None = None
    spread: float = 0.0

    @property
    def primary_token_id(self) -> str | None:
        return self.clob_token_ids[0] if self.clob_token_ids else None

    def to_shell(self) -> MarketShell:
        return MarketShell(
            id=self.id,
            title=self.title,
            image=self.image,
            probability=self.probability,
            outcomes=self.outcomes,
            outcome_prices=self.outcome_prices,
        )


@dataclass(frozen=True, slots=True)
class OutcomeListItem:
    """One outcome of a multi-outcome event, priced at list level only."""

    id: str
    question: str
    outcome: str
    probability: float
    volume: float = 0.0
    clob_token_ids: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class OutcomesList:
    event_id: str
    title: str
    outcomes: tuple[OutcomeListItem, ...] = ()
    target_index: int | None = None

    @property
    def is_multi_outcome(self) -> bool:
        return len(self.outcomes) > 1

    @property
    def target(self) -> OutcomeListItem | None:
        if self.target_index is None or self.target_index >= len(self.outcomes):
            return None
        return self.outcomes[self.target_index]


@dataclass(frozen=True, slots=True)
class OutcomeDetail:
    """Priced detail for a single outcome, fetched when the user selects it."""

    id: str
    question: str
    name: str
    yes_price: float
    no_price: float
    volume: float = 0.0
    spread: float = 0.0

    @property
    def yes_price_cents(self) -> float:
        return self.yes_price * 100

    @property
    def no_price_cents(self) -> float:
        return self.no_price * 100


@dataclass(frozen=True, slots=True)
class OutcomeSelection:
    """What the detail view shows for the currently selected outcome."""

    id: str
    label: str
    yes_price: float
    no_price: float

    @property
    def yes_price_cents(self) -> float:
        return self.yes_price * 100

    @property
    def no_price_cents(self) -> float:
        return self.no_price * 100

    @classmethod
    def from_list_item(cls, item: OutcomeListItem) -> "OutcomeSelection":
        yes = item.probability / 100
        return cls(id=item.id, label=item.outcome, yes_price=yes, no_price=1 - yes)

    @classmethod
    def from_detail(cls, detail: OutcomeDetail) -> "OutcomeSelection":
        return cls(
            id=detail.id,
            label=detail.name,
            yes_price=detail.yes_price,
            no_price=detail.no_price,
        )


@dataclass(frozen=True, slots=True)
class BookLevel:
    price: float
    size: float


@dataclass(frozen=True, slots=True)
class OrderBook:
    bids: tuple[BookLevel, ...] = ()
    asks: tuple[BookLevel, ...] = ()

    @property
    def spread(self) -> float:
        if not self.bids or not self.asks:
            return 0.0
        return max(self.asks[0].price - self.bids[0].price, 0.0)

    @property
    def is_empty(self) -> bool:
        return not self.bids and not self.asks


@dataclass(frozen=True, slots=True)
class Trade:
    id: str
    wallet: str
    side: str
    size: float
    price: float
    timestamp: datetime | None = None


@dataclass(frozen=True, slots=True)
class PricePoint:
    timestamp: float
    probability: float


@dataclass(frozen=True, slots=True)
class Holder:
    wallet: str
    amount: float
    outcome: str | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class TraderStat:
    wallet: str
    volume: float
    trades: int = 0


@dataclass(frozen=True, slots=True)
class TraderSummary:
    """Trade-feed aggregate: distinct trader count plus the busiest wallets."""

    count: int = 0
    top: tuple[TraderStat, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class SearchHistoryItem:
    id: str
    name: str
    probability: float
    volume: float
    timestamp: float
