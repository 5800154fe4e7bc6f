from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator

import httpx
from dateutil import parser as date_parser
from loguru import logger

from marketsync.core.config import Settings, settings as default_settings
from marketsync.errors import MarketSyncError, NetworkError, ParseError, RateLimitError, UpstreamError

DEFAULT_RETRY_AFTER_SECONDS = 5.0

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "marketsync/0.1 (+https://polymarket.com)",
}


class Namespace(str, Enum):
    GAMMA = "gamma"  # catalog / listing
    CLOB = "clob"  # order book / pricing
    DATA = "data"  # portfolio / activity


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float:
    """Seconds to wait from a ``Retry-After`` header (delta-seconds or HTTP-date)."""

    if not value:
        return DEFAULT_RETRY_AFTER_SECONDS
    candidate = value.strip()
    try:
        return max(float(candidate), 0.0)
    except ValueError:
        pass
    try:
        when = date_parser.parse(candidate)
    except (ValueError, OverflowError):
        return DEFAULT_RETRY_AFTER_SECONDS
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max((when - current).total_seconds(), 0.0)


def raise_for_upstream(response: httpx.Response) -> None:
    if response.is_success:
        return
    url = str(response.request.url)
    if response.status_code == 429:
        raise RateLimitError(parse_retry_after(response.headers.get("Retry-After")), url=url)
    raise UpstreamError(response.status_code, url=url)


class PolymarketClient:
    """Async wrapper around the Polymarket catalog, pricing and activity APIs."""

    def __init__(
        self,
        *,
        config: Settings | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = config or default_settings
        self.timeout = timeout or self.settings.request_timeout_seconds
        self.client = httpx.AsyncClient(
            timeout=self.timeout,
            headers=DEFAULT_HEADERS,
            transport=transport,
        )

    def _url(self, namespace: Namespace, path: str) -> str:
        suffix = path.lstrip("/")
        if self.settings.proxy_base_url is not None:
            proxy = str(self.settings.proxy_base_url).rstrip("/")
            return f"{proxy}/proxy/{namespace.value}/{suffix}"
        return f"{self.settings.namespace_base_url(namespace.value)}/{suffix}"

    @staticmethod
    def _serialize_filter_value(value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            parts: list[str] = []
            for item in value:
                serialized = PolymarketClient._serialize_filter_value(item)
                if serialized is not None:
                    parts.append(serialized)
            return ",".join(parts) if parts else None
        return str(value)

    def _build_params(self, params: dict[str, Any] | None) -> dict[str, str]:
        built: dict[str, str] = {}
        for key, value in (params or {}).items():
            serialized = self._serialize_filter_value(value)
            if serialized is not None:
                built[key] = serialized
        return built

    async def get_json(
        self,
        namespace: Namespace,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        url = self._url(namespace, path)
        query = self._build_params(params)
        logger.debug("Polymarket GET {} params={}", url, query)
        try:
            response = await self.client.get(url, params=query)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Request timed out after {self.timeout:g}s", url=url) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"Request failed: {exc}", url=url) from exc

        raise_for_upstream(response)
        try:
            return response.json()
        except ValueError as exc:
            raise ParseError(f"Response from {url} is not valid JSON") from exc

    async def fetch_market(self, market_id: str) -> Any:
        return await self.get_json(Namespace.GAMMA, f"/markets/{market_id}")

    async def fetch_event(self, event_id: str) -> Any:
        return await self.get_json(Namespace.GAMMA, f"/events/{event_id}")

    async def fetch_events(self, *, limit: int, offset: int = 0, **filters: Any) -> Any:
        return await self.get_json(
            Namespace.GAMMA, "/events", {"limit": limit, "offset": offset, **filters}
        )

    async def fetch_markets(self, *, limit: int, offset: int = 0, **filters: Any) -> Any:
        return await self.get_json(
            Namespace.GAMMA, "/markets", {"limit": limit, "offset": offset, **filters}
        )

    async def iter_catalog(
        self,
        *,
        page_size: int | None = None,
        max_offset: int | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield every open market once, walking ``/events`` and then ``/markets``.

        A failing page ends its phase; the error only propagates when nothing
        has been yielded yet.
        """

        page_size = page_size or self.settings.catalog_page_size
        max_offset = self.settings.catalog_max_offset if max_offset is None else max_offset
        seen: set[str] = set()

        for phase, fetch_page in (("events", self.fetch_events), ("markets", self.fetch_markets)):
            offset = 0
            while offset <= max_offset:
                try:
                    payload = await fetch_page(limit=page_size, offset=offset, closed=False)
                except MarketSyncError as exc:
                    if not seen:
                        raise
                    logger.warning("Catalog {} page at offset {} failed: {}", phase, offset, exc)
                    break
                if not isinstance(payload, list):
                    raise ParseError(f"Catalog {phase} page is not a JSON list")

                for raw in payload:
                    for market in self._flatten(raw, phase):
                        market_id = str(market.get("id"))
                        if market_id in seen:
                            continue
                        seen.add(market_id)
                        yield market

                if len(payload) < page_size:
                    break
                offset += page_size
            logger.info("Catalog {} phase done; {} unique markets so far", phase, len(seen))

    @staticmethod
    def _flatten(raw: Any, phase: str) -> list[dict[str, Any]]:
        if not isinstance(raw, dict):
            return []
        if phase == "markets":
            return [raw] if raw.get("id") is not None else []
        event_ref = {"id": raw.get("id"), "title": raw.get("title")}
        flattened: list[dict[str, Any]] = []
        for market in raw.get("markets") or []:
            if not isinstance(market, dict) or market.get("id") is None:
                continue
            if market.get("closed"):
                continue
            flattened.append({**market, "events": market.get("events") or [event_ref]})
        return flattened

    async def fetch_trades(self, condition_id: str, *, limit: int) -> Any:
        return await self.get_json(
            Namespace.DATA, "/trades", {"market": condition_id, "limit": limit}
        )

    async def fetch_order_book(self, token_id: str) -> Any:
        return await self.get_json(Namespace.CLOB, "/book", {"token_id": token_id})

    async def fetch_price_history(self, token_id: str, *, interval: str = "1d") -> Any:
        return await self.get_json(
            Namespace.CLOB, "/prices-history", {"market": token_id, "interval": interval}
        )

    async def fetch_holders(self, condition_id: str, *, limit: int) -> Any:
        return await self.get_json(
            Namespace.DATA, "/holders", {"market": condition_id, "limit": limit}
        )

    async def search(self, query: str, *, limit: int) -> Any:
        return await self.get_json(
            Namespace.GAMMA, "/public-search", {"q": query, "limit_per_type": limit}
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "PolymarketClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
