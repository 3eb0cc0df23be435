"""
Universalis Tracker - Universalis API Client

Fetches market board data for batches of items from the Universalis API and
parses it into MarketSnapshot records. Every request is issued through the
shared RateLimitedFetchQueue; this module never calls the API directly.

Response shapes:
- single item:  {"itemID": 5, "listings": [...], "unitsSold": 12, ...}
- multi item:   {"itemIDs": [5, 6], "items": {"5": {...}, "6": {...}}}

No inline retries: a failed batch is retried by the next scheduled pass.
Scheduling lives in pipeline/updater.py and pipeline/scheduler.py.
"""

from __future__ import annotations

from typing import Any, Sequence

import httpx
import structlog

from src.config import settings
from src.models.records import Listing, MarketSnapshot, Prices, Sale
from src.pipeline.fetch_queue import RateLimitedFetchQueue

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _number_or_na(value: Any, fallback: Any = "NA") -> Any:
    return value if _is_number(value) else fallback


def _list_field(raw: dict[str, Any], key: str) -> list[Any]:
    value = raw.get(key) or []
    if not isinstance(value, list):
        raise ValueError(f"{key} is not a list: {type(value).__name__}")
    return value


def extract_items(payload: Any) -> dict[int, dict[str, Any]]:
    """
    Normalize either response shape into {item_id: raw_item}.

    Raises:
        ValueError: payload matches neither the single- nor multi-item shape.
    """
    if isinstance(payload, dict):
        if payload.get("itemID") is not None:
            return {int(payload["itemID"]): payload}

        items = payload.get("items")
        if isinstance(items, dict):
            extracted: dict[int, dict[str, Any]] = {}
            for key, raw in items.items():
                try:
                    extracted[int(key)] = raw
                except (TypeError, ValueError):
                    logger.warning("universalis_bad_item_key", key=str(key)[:50])
            return extracted

    raise ValueError("Unexpected response format from Universalis API")


def parse_snapshot(raw: dict[str, Any] | None) -> MarketSnapshot:
    """
    Parse one raw upstream item into a MarketSnapshot.

    The API omits hasData on some responses; when it does, a numeric
    unitsSold counts as data. Items without data become the placeholder
    snapshot. Numeric fields are copied as-is (no rounding). A body that is
    not an object, or a listings/recentHistory field that is not a list,
    raises ValueError.
    """
    if not raw:
        return MarketSnapshot.placeholder()
    if not isinstance(raw, dict):
        raise ValueError(f"Item body is not an object: {type(raw).__name__}")

    units_sold = raw.get("unitsSold")
    if "hasData" in raw:
        has_data = raw["hasData"] is True
    else:
        has_data = _is_number(units_sold)
    if not has_data:
        return MarketSnapshot.placeholder()

    listings = _list_field(raw, "listings")
    recent = _list_field(raw, "recentHistory")

    return MarketSnapshot(
        has_data=True,
        listings=[Listing.model_validate(entry) for entry in listings],
        listings_count=raw.get("listingsCount") or len(listings),
        units_for_sale=_number_or_na(raw.get("unitsForSale"), 0),
        recent_sales=[Sale.model_validate(entry) for entry in recent],
        units_sold=_number_or_na(units_sold, 0),
        sale_velocity=_number_or_na(raw.get("regularSaleVelocity")),
        prices=Prices(
            current_average=_number_or_na(raw.get("currentAveragePrice")),
            min=_number_or_na(raw.get("minPrice")),
            max=_number_or_na(raw.get("maxPrice")),
        ),
        last_upload_time=raw.get("lastUploadTime"),
        world_name=raw.get("worldName") or raw.get("dcName"),
    )


# ---------------------------------------------------------------------------
# API Client
# ---------------------------------------------------------------------------


class UniversalisClient:
    """
    Async client for the Universalis market board API.

    Usage:
        queue = RateLimitedFetchQueue()
        async with UniversalisClient(queue) as client:
            payload = await client.fetch_market_data([5, 6], "China")
            items = extract_items(payload)
    """

    def __init__(
        self,
        queue: RateLimitedFetchQueue,
        base_url: str | None = None,
        timeout: float | None = None,
        listings_limit: int | None = None,
        entries_limit: int | None = None,
        entries_within: int | None = None,
    ):
        self._queue = queue
        self._base_url = base_url or settings.UNIVERSALIS_BASE_URL
        self._timeout = timeout if timeout is not None else settings.UNIVERSALIS_TIMEOUT_SECONDS
        self._listings_limit = (
            listings_limit if listings_limit is not None else settings.UNIVERSALIS_LISTINGS_LIMIT
        )
        self._entries_limit = (
            entries_limit if entries_limit is not None else settings.UNIVERSALIS_ENTRIES_LIMIT
        )
        self._entries_within = (
            entries_within
            if entries_within is not None
            else settings.UNIVERSALIS_ENTRIES_WITHIN_SECONDS
        )
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> UniversalisClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Accept": "application/json"},
            timeout=self._timeout,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()

    @property
    def max_items_per_call(self) -> int:
        return self._queue.max_batch_size

    def _query_params(self) -> dict[str, int]:
        return {
            "listings": self._listings_limit,
            "entries": self._entries_limit,
            "entriesWithin": self._entries_within,
        }

    async def _get(self, path: str) -> Any:
        assert self._client is not None, "Client not initialized. Use 'async with'."

        try:
            response = await self._client.get(path, params=self._query_params())
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "universalis_http_error",
                status_code=e.response.status_code,
                path=path,
            )
            raise
        except httpx.RequestError as e:
            logger.error(
                "universalis_request_error",
                error=str(e),
                error_type=type(e).__name__,
                path=path,
            )
            raise

        return response.json()

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def fetch_market_data(
        self,
        item_ids: Sequence[int],
        world_name: str | None = None,
    ) -> Any:
        """
        Fetch raw market data for one batch of items.

        Args:
            item_ids: Item IDs, at most max_items_per_call of them.
            world_name: World or data center (default: settings.WORLD_NAME).

        Returns:
            The decoded JSON payload (single- or multi-item shape).

        Raises:
            ValueError: empty or oversized batch (before anything is queued).
            httpx.HTTPStatusError: non-2xx response.
            httpx.RequestError: transport failure or timeout.
        """
        if not item_ids:
            raise ValueError("item_ids cannot be empty")

        world = world_name or settings.WORLD_NAME
        path = f"/{world}/{','.join(str(item_id) for item_id in item_ids)}"

        logger.info("universalis_fetch_batch", world=world, item_ids=list(item_ids))

        data = await self._queue.enqueue(lambda: self._get(path), batch_size=len(item_ids))

        logger.info(
            "universalis_fetch_batch_complete",
            world=world,
            item_count=len(item_ids),
        )
        return data
