from __future__ import annotations

import json
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Iterable

from dateutil import parser as date_parser

from marketsync.domain import (
    BookLevel,
    Holder,
    MarketDetail,
    MarketSummary,
    OrderBook,
    OutcomeDetail,
    OutcomeListItem,
    OutcomesList,
    PricePoint,
    Trade,
    TraderStat,
    TraderSummary,
)
from marketsync.errors import ParseError

DEFAULT_PROBABILITY = 50.0


def _as_list(value: Any) -> list[Any]:
    """Return value as a list when possible, decoding JSON strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return None
    try:
        return date_parser.isoparse(str(value))
    except (ValueError, TypeError):
        return None


def _parse_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _require_mapping(payload: Any, what: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ParseError(f"Expected a JSON object for {what}, got {type(payload).__name__}")
    return payload


def _require_list(payload: Any, what: str, *keys: str) -> list[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in keys:
            candidate = payload.get(key)
            if isinstance(candidate, list):
                return candidate
    raise ParseError(f"Expected a JSON list for {what}")


def extract_probability(raw_market: dict[str, Any]) -> float:
    """Yes-probability in percent, trying outcomePrices, bestBid, lastTradePrice."""

    prices = _as_list(raw_market.get("outcomePrices"))
    if prices:
        first = _parse_float(prices[0])
        if first is not None and 0 <= first <= 1:
            return first * 100

    for field in ("bestBid", "lastTradePrice"):
        price = _parse_float(raw_market.get(field))
        if price is not None and 0 < price < 1:
            return price * 100

    return DEFAULT_PROBABILITY


def _outcome_prices(raw_market: dict[str, Any], probability: float) -> tuple[float, ...]:
    prices = [_parse_float(item) for item in _as_list(raw_market.get("outcomePrices"))]
    if prices and all(price is not None for price in prices):
        return tuple(prices)
    yes = probability / 100
    return (yes, 1 - yes)


def _primary_event(raw_market: dict[str, Any]) -> dict[str, Any] | None:
    events = _as_list(raw_market.get("events"))
    if events and isinstance(events[0], dict):
        return events[0]
    return None


def _status(raw_market: dict[str, Any]) -> str:
    if raw_market.get("closed"):
        return "closed"
    if raw_market.get("active") is False:
        return "inactive"
    return str(raw_market.get("status") or "active").lower()


def normalize_market_summary(raw_market: dict[str, Any]) -> MarketSummary:
    raw_market = _require_mapping(raw_market, "market")
    raw_id = raw_market.get("id") or raw_market.get("marketId")
    if raw_id is None:
        raise ParseError("Market payload is missing an id")

    event = _primary_event(raw_market) or {}
    return MarketSummary(
        id=str(raw_id),
        title=raw_market.get("question") or raw_market.get("title") or "",
        probability=extract_probability(raw_market),
        volume_usd=_parse_float(raw_market.get("volumeNum") or raw_market.get("volume")) or 0.0,
        volume_24h=_parse_float(raw_market.get("volume24hr")) or 0.0,
        volume_7d=_parse_float(raw_market.get("volume1wk")) or 0.0,
        volume_1mo=_parse_float(raw_market.get("volume1mo")) or 0.0,
        image=raw_market.get("image") or raw_market.get("icon"),
        status=_status(raw_market),
        slug=raw_market.get("slug") or "",
        event_title=event.get("title") or raw_market.get("eventTitle") or "",
        group_title=raw_market.get("groupItemTitle") or "",
    )


def normalize_market_detail(raw_market: dict[str, Any]) -> MarketDetail:
    summary = normalize_market_summary(raw_market)
    event = _primary_event(raw_market)
    outcomes = tuple(str(item) for item in _as_list(raw_market.get("outcomes"))) or ("Yes", "No")
    event_id = raw_market.get("eventId") or (event.get("id") if event else None)

    return MarketDetail(
        id=summary.id,
        title=summary.title,
        probability=summary.probability,
        volume_usd=summary.volume_usd,
        volume_24h=summary.volume_24h,
        volume_7d=summary.volume_7d,
        volume_1mo=summary.volume_1mo,
        image=summary.image,
        status=summary.status,
        slug=summary.slug,
        event_title=summary.event_title,
        group_title=summary.group_title,
        description=raw_market.get("description") or "",
        outcomes=outcomes,
        outcome_prices=_outcome_prices(raw_market, summary.probability),
        condition_id=raw_market.get("conditionId") or "",
        clob_token_ids=tuple(str(item) for item in _as_list(raw_market.get("clobTokenIds"))),
        end_date=_parse_datetime(raw_market.get("endDate") or raw_market.get("closeTime")),
        event_id=str(event_id) if event_id is not None else None,
        spread=_parse_float(raw_market.get("spread")) or 0.0,
    )


def normalize_catalog_entries(
    raw_entries: Iterable[dict[str, Any]],
) -> tuple[MarketSummary, ...]:
    """Flatten events and markets into unique summaries, keeping first-seen order."""

    seen: set[str] = set()
    summaries: list[MarketSummary] = []
    for raw in raw_entries:
        if not isinstance(raw, dict):
            continue
        nested = raw.get("markets")
        candidates = nested if isinstance(nested, list) else [raw]
        for candidate in candidates:
            if not isinstance(candidate, dict):
                continue
            if isinstance(nested, list) and not candidate.get("events"):
                candidate = {**candidate, "events": [{"id": raw.get("id"), "title": raw.get("title")}]}
            try:
                summary = normalize_market_summary(candidate)
            except ParseError:
                continue
            if summary.id in seen:
                continue
            seen.add(summary.id)
            summaries.append(summary)
    return tuple(summaries)


def normalize_outcomes(
    raw_event: dict[str, Any], *, target_market_id: str | None = None
) -> OutcomesList:
    raw_event = _require_mapping(raw_event, "event")
    items: list[OutcomeListItem] = []
    target_index: int | None = None
    for raw_market in _as_list(raw_event.get("markets")):
        if not isinstance(raw_market, dict) or raw_market.get("id") is None:
            continue
        market_id = str(raw_market["id"])
        if market_id == target_market_id:
            target_index = len(items)
        items.append(
            OutcomeListItem(
                id=market_id,
                question=raw_market.get("question") or "",
                outcome=raw_market.get("groupItemTitle") or raw_market.get("question") or "",
                probability=extract_probability(raw_market),
                volume=_parse_float(raw_market.get("volumeNum") or raw_market.get("volume")) or 0.0,
                clob_token_ids=tuple(
                    str(item) for item in _as_list(raw_market.get("clobTokenIds"))
                ),
            )
        )
    return OutcomesList(
        event_id=str(raw_event.get("id") or ""),
        title=raw_event.get("title") or "",
        outcomes=tuple(items),
        target_index=target_index,
    )


def normalize_outcome_detail(raw_market: dict[str, Any]) -> OutcomeDetail:
    detail = normalize_market_detail(raw_market)
    yes = detail.outcome_prices[0] if detail.outcome_prices else detail.probability / 100
    no = detail.outcome_prices[1] if len(detail.outcome_prices) > 1 else 1 - yes
    return OutcomeDetail(
        id=detail.id,
        question=detail.title,
        name=detail.group_title or detail.title,
        yes_price=yes,
        no_price=no,
        volume=detail.volume_usd,
        spread=detail.spread,
    )


def _book_side(levels: Any, *, descending: bool) -> tuple[BookLevel, ...]:
    parsed: list[BookLevel] = []
    for level in _as_list(levels):
        if not isinstance(level, dict):
            continue
        price = _parse_float(level.get("price"))
        size = _parse_float(level.get("size"))
        if price is None or size is None:
            continue
        parsed.append(BookLevel(price=price, size=size))
    parsed.sort(key=lambda level: level.price, reverse=descending)
    return tuple(parsed)


def normalize_order_book(payload: Any) -> OrderBook:
    payload = _require_mapping(payload, "order book")
    return OrderBook(
        bids=_book_side(payload.get("bids"), descending=True),
        asks=_book_side(payload.get("asks"), descending=False),
    )


def normalize_trades(payload: Any) -> tuple[Trade, ...]:
    trades: list[Trade] = []
    for index, raw in enumerate(_require_list(payload, "trades", "data", "trades")):
        if not isinstance(raw, dict):
            continue
        wallet = raw.get("proxyWallet") or raw.get("maker") or raw.get("user") or ""
        trades.append(
            Trade(
                id=str(raw.get("transactionHash") or raw.get("id") or f"{wallet}-{index}"),
                wallet=str(wallet),
                side=str(raw.get("side") or raw.get("outcome") or "").upper(),
                size=_parse_float(raw.get("size") or raw.get("amount")) or 0.0,
                price=_parse_float(raw.get("price")) or 0.0,
                timestamp=_parse_datetime(raw.get("timestamp") or raw.get("createdAt")),
            )
        )
    return tuple(trades)


def summarize_traders(trades: Iterable[Trade], *, limit: int) -> TraderSummary:
    """Distinct wallets in the trade feed plus the highest-volume ones."""

    volume: dict[str, float] = defaultdict(float)
    counts: dict[str, int] = defaultdict(int)
    for trade in trades:
        if not trade.wallet:
            continue
        volume[trade.wallet] += trade.size * trade.price
        counts[trade.wallet] += 1

    ranked = sorted(volume, key=lambda wallet: volume[wallet], reverse=True)
    top = tuple(
        TraderStat(wallet=wallet, volume=volume[wallet], trades=counts[wallet])
        for wallet in ranked[:limit]
    )
    return TraderSummary(count=len(volume), top=top)


def normalize_holders(payload: Any, *, limit: int) -> tuple[Holder, ...]:
    holders: list[Holder] = []
    for group in _require_list(payload, "holders", "data"):
        if not isinstance(group, dict):
            continue
        # The holders endpoint nests wallets per outcome token.
        entries = group.get("holders") if isinstance(group.get("holders"), list) else [group]
        for raw in entries:
            if not isinstance(raw, dict):
                continue
            wallet = raw.get("proxyWallet") or raw.get("wallet") or raw.get("address")
            if not wallet:
                continue
            outcome_index = raw.get("outcomeIndex")
            holders.append(
                Holder(
                    wallet=str(wallet),
                    amount=_parse_float(raw.get("amount") or raw.get("size")) or 0.0,
                    outcome=str(outcome_index) if outcome_index is not None else raw.get("outcome"),
                    name=raw.get("name") or raw.get("pseudonym") or None,
                )
            )
    holders.sort(key=lambda holder: holder.amount, reverse=True)
    return tuple(holders[:limit])


def normalize_price_history(payload: Any) -> tuple[PricePoint, ...]:
    points: list[PricePoint] = []
    for raw in _require_list(payload, "price history", "history"):
        if not isinstance(raw, dict):
            continue
        timestamp = _parse_float(raw.get("t") or raw.get("timestamp"))
        price = _parse_float(raw.get("p") if raw.get("p") is not None else raw.get("price"))
        if timestamp is None or price is None:
            continue
        points.append(PricePoint(timestamp=timestamp, probability=price * 100))
    return tuple(points)


def normalize_search_results(payload: Any) -> tuple[MarketSummary, ...]:
    if isinstance(payload, dict):
        entries = payload.get("events") or payload.get("markets") or []
    else:
        entries = payload
    return normalize_catalog_entries(_require_list(entries, "search results"))
