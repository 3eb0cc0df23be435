"""
Universalis Tracker - Shared pytest Fixtures & Configuration

Provides common fixtures for all test modules:
- Catalog and raw upstream payload builders
- In-memory and in-memory-SQLite item stores
- A fake upstream client driven by canned per-item payloads
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Sequence

import httpx
import pytest

from src.pipeline.catalog import Catalog
from src.storage.item_store import InMemoryItemStore, SqlItemStore


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------


def raw_item(item_id: int, units_sold: Any = 0, **overrides: Any) -> dict[str, Any]:
    """One upstream item in the shape Universalis returns it."""
    raw = {
        "itemID": item_id,
        "worldName": "China",
        "lastUploadTime": 1772366400000,
        "listings": [
            {
                "pricePerUnit": 120,
                "quantity": 3,
                "hq": False,
                "total": 360,
                "retainerName": "Mogmog",
                "lastReviewTime": 1772366000,
            }
        ],
        "recentHistory": [
            {
                "pricePerUnit": 118,
                "quantity": 2,
                "hq": False,
                "total": 236,
                "timestamp": 1772365000,
                "buyerName": "Tataru",
            }
        ],
        "listingsCount": 1,
        "unitsForSale": 3,
        "unitsSold": units_sold,
        "regularSaleVelocity": 14.285714285714286,
        "currentAveragePrice": 119.5,
        "minPrice": 110,
        "maxPrice": 130,
    }
    raw.update(overrides)
    return raw


def multi_payload(*items: dict[str, Any]) -> dict[str, Any]:
    """Wrap raw items in the multi-item response shape."""
    return {
        "itemIDs": [item["itemID"] for item in items],
        "items": {str(item["itemID"]): item for item in items},
    }


class FakeUniversalisClient:
    """
    Stands in for UniversalisClient.

    Answers from a dict of raw items; ids listed in fail_on make the whole
    batch raise, mimicking a transport failure.
    """

    def __init__(
        self,
        items: dict[int, dict[str, Any]] | None = None,
        max_items_per_call: int = 5,
        fail_on: Sequence[int] = (),
    ):
        self.items = items or {}
        self.max_items_per_call = max_items_per_call
        self.fail_on = set(fail_on)
        self.calls: list[tuple[list[int], str | None]] = []

    async def fetch_market_data(
        self, item_ids: Sequence[int], world_name: str | None = None
    ) -> dict[str, Any]:
        batch = list(item_ids)
        self.calls.append((batch, world_name))
        if self.fail_on.intersection(batch):
            raise httpx.ConnectError("connection refused")
        return multi_payload(*(self.items[i] for i in batch if i in self.items))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def catalog() -> Catalog:
    return Catalog.from_dicts(
        [
            {"id": 1, "displayName": "Fire Shard", "tags": ["crystal"]},
            {"id": 2, "displayName": "Ice Shard", "tags": ["crystal"]},
            {"id": 3, "name": "Wind Shard"},
        ]
    )


@pytest.fixture
def memory_store() -> InMemoryItemStore:
    return InMemoryItemStore()


@pytest.fixture
async def sql_store() -> AsyncGenerator[SqlItemStore, None]:
    """
    SqlItemStore over in-memory SQLite.

    aiosqlite's :memory: database lives on a single pooled connection, so
    the schema persists for the test's lifetime.
    """
    store = SqlItemStore("sqlite+aiosqlite:///:memory:")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture(params=["memory", "sql"])
async def any_store(request, memory_store, sql_store):
    """Runs a test once per ItemStore implementation."""
    return memory_store if request.param == "memory" else sql_store
