"""Domain models representing normalized market data."""

from .models import (
    BookLevel,
    CacheEntry,
    Holder,
    MarketDetail,
    MarketShell,
    MarketSummary,
    OrderBook,
    OutcomeDetail,
    OutcomeListItem,
    OutcomeSelection,
    OutcomesList,
    PricePoint,
    SearchHistoryItem,
    Trade,
    TraderStat,
    TraderSummary,
)
from .tracked import Pending, Resolved, Stale, Tracked

__all__ = [
    "BookLevel",
    "CacheEntry",
    "Holder",
    "MarketDetail",
    "MarketShell",
    "MarketSummary",
    "OrderBook",
    "OutcomeDetail",
    "OutcomeListItem",
    "OutcomeSelection",
    "OutcomesList",
    "Pending",
    "PricePoint",
    "Resolved",
    "SearchHistoryItem",
    "Stale",
    "Trade",
    "TraderStat",
    "TraderSummary",
    "Tracked",
]
