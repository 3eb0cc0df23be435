"""
Models package: SQLAlchemy tables and the pydantic records stored in them.
"""

from src.models.item import Base, Item
from src.models.records import (
    NOT_AVAILABLE,
    CatalogEntry,
    ItemRecord,
    Listing,
    MarketSnapshot,
    Prices,
    Sale,
)

__all__ = [
    "Base",
    "CatalogEntry",
    "Item",
    "ItemRecord",
    "Listing",
    "MarketSnapshot",
    "NOT_AVAILABLE",
    "Prices",
    "Sale",
]
