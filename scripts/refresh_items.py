"""
Universalis Tracker - Manual Refresh Script

Runs one refresh outside the service, against the same store and catalog,
and prints the summary as JSON. Useful after editing the catalog, or to
re-pull specific items without waiting for their next_update.

Usage:
    python scripts/refresh_items.py --ids 2,3,4
    python scripts/refresh_items.py --all --world Chaos
    python scripts/refresh_items.py --due
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

# Resolve project root so this script can be run from any working directory
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.config import settings
from src.pipeline.catalog import load_catalog
from src.pipeline.fetch_queue import RateLimitedFetchQueue
from src.pipeline.universalis import UniversalisClient
from src.pipeline.updater import ItemUpdater, RefreshSummary
from src.storage.item_store import SqlItemStore


def _id_list(value: str) -> list[int]:
    try:
        ids = [int(part.strip()) for part in value.split(",") if part.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid item id list: {value!r}")
    if not ids:
        raise argparse.ArgumentTypeError("at least one item id is required")
    return ids


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Refresh Universalis market data for tracked items.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/refresh_items.py --ids 2,3,4
  python scripts/refresh_items.py --all
  python scripts/refresh_items.py --due --world Chaos
""",
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument(
        "--ids",
        type=_id_list,
        help="Comma-separated item IDs to refresh (need not be in the catalog).",
    )
    target.add_argument(
        "--all",
        action="store_true",
        help="Refresh every catalog item.",
    )
    target.add_argument(
        "--due",
        action="store_true",
        help="Refresh only items whose next update has passed (one scheduled pass).",
    )
    parser.add_argument(
        "--world",
        type=str,
        default=None,
        help=f"World or data center to query (default: {settings.WORLD_NAME}).",
    )
    return parser.parse_args(argv)


async def run_refresh(args: argparse.Namespace) -> RefreshSummary:
    store = SqlItemStore(settings.DATABASE_URL)
    await store.initialize()
    try:
        catalog = load_catalog(settings.CATALOG_PATH)
        async with UniversalisClient(RateLimitedFetchQueue()) as client:
            updater = ItemUpdater(store, catalog, client, world_name=args.world)
            if args.due:
                return await updater.run_scheduled_pass()
            item_ids = catalog.ids() if args.all else args.ids
            return await updater.refresh(item_ids)
    finally:
        await store.close()


async def main() -> None:
    args = parse_args()

    try:
        summary = await run_refresh(args)
    except Exception as e:
        print(f"Refresh failed: {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(summary._asdict(), indent=2))
    if summary.failed_batches or summary.store_failures:
        sys.exit(2)


if __name__ == "__main__":
    asyncio.run(main())
