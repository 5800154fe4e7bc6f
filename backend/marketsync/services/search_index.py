"""Token-scored substring search over the in-memory market catalog."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Sequence

from loguru import logger

from marketsync.domain import MarketSummary
from marketsync.errors import MarketSyncError, RateLimitError

FULL_MATCH_SCORE = 100
TOKEN_SCORE = 10
PREFIX_BONUS = 5

RemoteSearch = Callable[[str, int], Awaitable[Sequence[MarketSummary]]]


@dataclass(frozen=True, slots=True)
class SearchHit:
    market: MarketSummary
    score: int


def tokenize(query: str) -> list[str]:
    return [token for token in query.lower().split() if len(token) > 1]


def score_title(title: str, query: str, tokens: Sequence[str]) -> int:
    """Score a lower-cased ``title`` against a lower-cased ``query``."""

    score = 0
    if query in title:
        score += FULL_MATCH_SCORE
    for token in tokens:
        if token in title:
            score += TOKEN_SCORE
            if title.startswith(token):
                score += PREFIX_BONUS
    return score


class SearchIndex:
    """Process-wide catalog of summaries, replaced wholesale on each refresh."""

    def __init__(self, catalog: Iterable[MarketSummary] = ()) -> None:
        self._entries: tuple[tuple[MarketSummary, str], ...] = ()
        self._by_id: dict[str, MarketSummary] = {}
        self.replace(catalog)

    def replace(self, catalog: Iterable[MarketSummary]) -> None:
        entries = tuple((market, market.title.lower()) for market in catalog)
        by_id: dict[str, MarketSummary] = {}
        for market, _ in entries:
            by_id.setdefault(market.id, market)
        # Swap both views together so readers never see a half-built catalog.
        self._entries, self._by_id = entries, by_id
        logger.debug("Search index now holds {} markets", len(entries))

    @property
    def catalog(self) -> tuple[MarketSummary, ...]:
        return tuple(market for market, _ in self._entries)

    def get(self, market_id: str) -> MarketSummary | None:
        return self._by_id.get(market_id)

    def __len__(self) -> int:
        return len(self._entries)

    def search(self, query: str, limit: int) -> list[SearchHit]:
        normalized = query.strip().lower()
        if not normalized or limit <= 0:
            return []
        tokens = tokenize(normalized)
        hits = []
        for market, title in self._entries:
            score = score_title(title, normalized, tokens)
            if score > 0:
                hits.append(SearchHit(market=market, score=score))
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:limit]

    async def search_with_fallback(
        self,
        query: str,
        limit: int,
        remote: RemoteSearch,
    ) -> list[SearchHit]:
        """Local search first; ask ``remote`` only when the catalog has no match.

        Remote results are merged with local ones by id and re-ranked with the
        same scoring. Rate limiting propagates so callers can back off; other
        upstream failures leave the local result in place.
        """

        local = self.search(query, limit)
        if local or not query.strip() or limit <= 0:
            return local

        try:
            remote_markets = await remote(query.strip(), limit)
        except RateLimitError:
            raise
        except MarketSyncError as exc:
            logger.warning("Remote search for {!r} failed: {}", query, exc)
            return local

        normalized = query.strip().lower()
        tokens = tokenize(normalized)
        seen = {hit.market.id for hit in local}
        merged = list(local)
        for market in remote_markets:
            if market.id in seen:
                continue
            seen.add(market.id)
            # Upstream matched it on fields we do not index; keep it visible.
            score = max(score_title(market.title.lower(), normalized, tokens), 1)
            merged.append(SearchHit(market=market, score=score))
        merged.sort(key=lambda hit: hit.score, reverse=True)
        return merged[:limit]
