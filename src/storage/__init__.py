"""Storage package: item persistence behind the ItemStore interface."""

from src.storage.item_store import InMemoryItemStore, ItemStore, SqlItemStore

__all__ = ["InMemoryItemStore", "ItemStore", "SqlItemStore"]
