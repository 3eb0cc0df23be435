"""
Universalis Tracker - Item Catalog

The fixed list of items the tracker follows, loaded once at startup from a
JSON file (settings.CATALOG_PATH). Read-only for the lifetime of the process.

Accepted file shapes:
    [{"id": 2, "name": "Fire Shard", "tags": ["crystal"]}, ...]
    {"items": [...]}
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Iterator

import structlog

from src.config import settings
from src.models.records import CatalogEntry

logger = structlog.get_logger(__name__)


class Catalog:
    """Ordered, id-indexed collection of CatalogEntry."""

    def __init__(self, entries: Iterable[CatalogEntry]):
        self._by_id: dict[int, CatalogEntry] = {}
        for entry in entries:
            if entry.id in self._by_id:
                logger.warning("catalog_duplicate_id", item_id=entry.id)
                continue
            self._by_id[entry.id] = entry

    @classmethod
    def from_dicts(cls, raw_entries: Iterable[dict[str, Any]]) -> Catalog:
        return cls(CatalogEntry.model_validate(raw) for raw in raw_entries)

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._by_id

    def ids(self) -> list[int]:
        return list(self._by_id)

    def get(self, item_id: int) -> CatalogEntry | None:
        return self._by_id.get(item_id)

    def name_for(self, item_id: int) -> str:
        return self.entry_for(item_id).name

    def entry_for(self, item_id: int) -> CatalogEntry:
        """Catalog entry, or a bare entry for ids outside the catalog."""
        return self._by_id.get(item_id) or CatalogEntry(id=item_id)


def load_catalog(path: str | Path | None = None) -> Catalog:
    """
    Load the catalog JSON file.

    Raises:
        FileNotFoundError: catalog file is missing.
        ValueError: file is not valid JSON or has an unexpected shape.
    """
    catalog_path = Path(path or settings.CATALOG_PATH)
    data = json.loads(catalog_path.read_text(encoding="utf-8"))

    if isinstance(data, dict):
        data = data.get("items")
    if not isinstance(data, list):
        raise ValueError(f"Catalog {catalog_path} must be a JSON array of items")

    catalog = Catalog.from_dicts(data)
    logger.info("catalog_loaded", path=str(catalog_path), item_count=len(catalog))
    return catalog
