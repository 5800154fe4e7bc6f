from __future__ import annotations

import asyncio

import pytest

from marketsync.errors import MarketSyncError
from upstream.client import PolymarketClient
from upstream.normalize import normalize_catalog_entries


@pytest.mark.network
def test_polymarket_client_live_fetches_markets():
    async def scenario():
        async with PolymarketClient(timeout=15) as client:
            return await client.fetch_markets(limit=5, closed=False)

    try:
        payload = asyncio.run(scenario())
    except MarketSyncError as exc:
        pytest.skip(f"Polymarket API unavailable: {exc}")

    markets = normalize_catalog_entries(payload)
    assert markets, "Polymarket API returned no markets"
    for market in markets:
        assert market.id, "market payload missing identifier"
        assert market.title, "market payload missing question text"
        assert 0 <= market.probability <= 100
