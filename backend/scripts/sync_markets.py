import argparse
import asyncio
import json

from loguru import logger

from marketsync.core.config import get_settings
from marketsync.services.context import SyncContext
from marketsync.services.market_data import TIMEFRAMES
from marketsync.services.phased_loader import EntityView


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync Polymarket market data into the local cache")
    parser.add_argument("--search", metavar="QUERY", default=None, help="Search the market catalog")
    parser.add_argument("--limit", type=int, default=None, help="Show up to N markets or hits")
    parser.add_argument(
        "--timeframe",
        choices=TIMEFRAMES,
        default="24h",
        help="Volume window used to rank the market list",
    )
    parser.add_argument(
        "--market",
        metavar="ID",
        default=None,
        help="Load the full detail view for one market and print it",
    )
    parser.add_argument(
        "--no-warm-start",
        action="store_true",
        help="Ignore durable snapshots and fetch everything live",
    )
    return parser.parse_args()


def _describe_view(view: EntityView) -> dict[str, object]:
    def value(tracked):
        return None if tracked is None else tracked.value

    detail = value(view.detail)
    order_book = value(view.order_book)
    selection = value(view.selection)
    return {
        "market_id": view.market_id,
        "phase": view.phase.value,
        "title": view.title,
        "probability": detail.probability if detail else None,
        "outcomes": [item.outcome for item in value(view.outcomes).outcomes]
        if view.outcomes
        else [],
        "selected": selection.label if selection else None,
        "trades": len(value(view.trades) or ()),
        "spread": order_book.spread if order_book else None,
        "traders": value(view.traders_count),
        "holders": len(value(view.holders) or ()),
        "error": view.error.message if view.error else None,
    }


async def run(args: argparse.Namespace) -> None:
    settings = get_settings()
    context = SyncContext.build(settings)
    try:
        if not args.no_warm_start:
            context.data.warm_start([args.market] if args.market else [])

        if args.market:
            loader = context.loader()
            view = await loader.open(args.market)
            await loader.drain()
            if view is not None:
                if view.detail is not None:
                    context.history.record(view.detail.value)
                print(json.dumps(_describe_view(view), indent=2, default=str))
        elif args.search:
            await context.data.catalog()
            hits = await context.data.search(args.search, limit=args.limit)
            for hit in hits:
                print(f"{hit.score:>4}  {hit.market.id:>10}  {hit.market.title}")
            logger.info("{} hits for {!r}", len(hits), args.search)
        else:
            markets = (await context.data.market_list(args.timeframe)).value
            for market in markets[: args.limit or len(markets)]:
                print(f"{market.probability:6.1f}%  {market.id:>10}  {market.title}")
            context.prefetch.prefetch_other_timeframes(args.timeframe)

        await context.background.drain()
        logger.info("Cache stats: {}", context.stats().model_dump())
    finally:
        await context.aclose()


def main() -> None:
    asyncio.run(run(parse_args()))


if __name__ == "__main__":
    main()
