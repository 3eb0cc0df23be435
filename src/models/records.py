"""
Universalis Tracker - Domain Records

Pydantic models shared by the upstream client, the orchestrator, the item
store and the REST layer. Python attributes are snake_case; serialized JSON
uses the camelCase names the upstream API and the dashboard both speak.

Counters that have no published value carry the "NA" sentinel instead of a
number, so a never-fetched item is distinguishable from an item that sold 0.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.config import Tier

NOT_AVAILABLE = "NA"
NotAvailable = Literal["NA"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class CatalogEntry(_CamelModel):
    """Static catalog item. Immutable for the lifetime of the process."""

    model_config = ConfigDict(frozen=True)

    id: int
    display_name: str = Field(
        default="",
        validation_alias=AliasChoices("displayName", "display_name", "name"),
    )
    tags: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.display_name or f"Item {self.id}"


# ---------------------------------------------------------------------------
# Market snapshot
# ---------------------------------------------------------------------------


class Listing(_CamelModel):
    """One active market board listing."""

    price_per_unit: int = 0
    quantity: int = 0
    hq: bool = False
    total: int = 0
    world_name: str | None = None
    retainer_name: str | None = None
    last_review_time: int | None = None


class Sale(_CamelModel):
    """One completed sale from the recent history window."""

    price_per_unit: int = 0
    quantity: int = 0
    hq: bool = False
    total: int = 0
    timestamp: int | None = None   # epoch seconds
    buyer_name: str | None = None
    world_name: str | None = None


class Prices(_CamelModel):
    current_average: float | NotAvailable = NOT_AVAILABLE
    min: float | NotAvailable = NOT_AVAILABLE
    max: float | NotAvailable = NOT_AVAILABLE


class MarketSnapshot(_CamelModel):
    """
    Latest market state of one item.

    The default instance is the "not available" placeholder: no data, empty
    listings and sales, every other counter set to NOT_AVAILABLE.
    has_data=False is a legitimate state ("nothing published"), not an error.
    """

    has_data: bool = False
    listings: list[Listing] = Field(default_factory=list)
    listings_count: int = 0
    units_for_sale: int | NotAvailable = NOT_AVAILABLE
    recent_sales: list[Sale] = Field(default_factory=list)
    units_sold: int | NotAvailable = NOT_AVAILABLE
    sale_velocity: float | NotAvailable = NOT_AVAILABLE
    prices: Prices = Field(default_factory=Prices)
    last_upload_time: int | None = None   # epoch milliseconds, upstream verbatim
    world_name: str | None = None

    @classmethod
    def placeholder(cls) -> MarketSnapshot:
        return cls()


# ---------------------------------------------------------------------------
# Persisted record
# ---------------------------------------------------------------------------


class ItemRecord(_CamelModel):
    """
    The persisted unit: one row per catalog item.

    next_update is derived from last_update and the tier interval when the
    record is built from a fetch. Never set it on its own.
    """

    id: int
    name: str
    tags: list[str] = Field(default_factory=list)
    market_data: MarketSnapshot = Field(default_factory=MarketSnapshot)
    classification: Tier = Tier.COLD
    last_update: datetime | None = None
    next_update: datetime | None = None

    @classmethod
    def placeholder(cls, entry: CatalogEntry) -> ItemRecord:
        """Record synthesized for a catalog entry that was never fetched."""
        return cls(id=entry.id, name=entry.name, tags=list(entry.tags))

    @classmethod
    def from_snapshot(
        cls,
        entry: CatalogEntry,
        snapshot: MarketSnapshot,
        classification: Tier,
        fetched_at: datetime,
        interval: timedelta,
    ) -> ItemRecord:
        return cls(
            id=entry.id,
            name=entry.name,
            tags=list(entry.tags),
            market_data=snapshot.model_copy(deep=True),
            classification=classification,
            last_update=fetched_at,
            next_update=fetched_at + interval,
        )

    def to_api(self) -> dict:
        """JSON-ready dict in the dashboard's camelCase shape."""
        return self.model_dump(mode="json", by_alias=True)
