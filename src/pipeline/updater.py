"""
Universalis Tracker - Item Update Orchestrator

Decides which items are due, fetches them in batches through the shared
fetch queue, reclassifies them and writes each record as soon as its batch
arrives.

Per-item lifecycle: never fetched -> cold | mild | hot, with a self
transition on every refresh (hot can drop straight to cold). There is no
persisted "fetching" state; the previous record stays in place until the new
one is written.

Failure handling:
- A batch that fails (transport, HTTP status, malformed payload) is logged
  and skipped. Its items keep their past-due next_update, so the next pass
  picks them up again. The remaining batches still run.
- An item missing from a successful response, or failing to parse, is
  skipped with a warning.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, NamedTuple, Protocol, Sequence

import structlog

from src.config import Tier, settings
from src.engine.classifier import classify, interval_for
from src.models.records import ItemRecord
from src.pipeline.catalog import Catalog
from src.pipeline.universalis import extract_items, parse_snapshot
from src.storage.item_store import ItemStore

logger = structlog.get_logger(__name__)

_TIER_ORDER = (Tier.HOT, Tier.MILD, Tier.COLD)


class MarketDataSource(Protocol):
    """What the updater needs from the upstream client."""

    @property
    def max_items_per_call(self) -> int: ...

    async def fetch_market_data(
        self, item_ids: Sequence[int], world_name: str | None = None
    ) -> Any: ...


class RefreshSummary(NamedTuple):
    requested: int = 0
    updated: int = 0
    skipped: int = 0
    failed_batches: int = 0
    store_failures: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ItemUpdater:
    """
    Orchestrates refresh passes over the catalog.

    Store, catalog and client are injected so tests can run with an
    in-memory store and a fake client.

    Usage:
        updater = ItemUpdater(store, catalog, client)
        updater.start_initial_population()
        await updater.run_scheduled_pass()
    """

    def __init__(
        self,
        store: ItemStore,
        catalog: Catalog,
        client: MarketDataSource,
        world_name: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._catalog = catalog
        self._client = client
        self._world_name = world_name or settings.WORLD_NAME
        self._clock = clock or _utcnow
        self._in_flight: set[int] = set()
        self._initial_task: asyncio.Task | None = None

    @property
    def world_name(self) -> str:
        return self._world_name

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    @property
    def in_flight(self) -> frozenset[int]:
        return frozenset(self._in_flight)

    # -----------------------------------------------------------------------
    # Scheduling
    # -----------------------------------------------------------------------

    async def due_for_refresh(self, now: datetime | None = None) -> dict[str, list[int]]:
        """
        Item ids that need fetching, grouped by current tier.

        Stored records are due when next_update <= now. Catalog ids with no
        stored record are always due and listed under cold.
        """
        now = now or self._clock()
        due: dict[str, list[int]] = {tier.value: [] for tier in _TIER_ORDER}

        for record in await self._store.query_due(now):
            due[record.classification.value].append(record.id)

        fetched = await self._store.ids()
        due[Tier.COLD.value].extend(
            item_id for item_id in self._catalog.ids() if item_id not in fetched
        )
        return due

    async def run_scheduled_pass(self, now: datetime | None = None) -> RefreshSummary:
        """
        Refresh everything that is due.

        Tier only decides when an item becomes due; all due ids are fetched
        the same way. Ids already being fetched by another pass are left to
        that pass.
        """
        due = await self.due_for_refresh(now)
        ordered = [item_id for tier in _TIER_ORDER for item_id in due[tier.value]]
        to_fetch = [item_id for item_id in ordered if item_id not in self._in_flight]

        if not to_fetch:
            logger.info("updater_nothing_due", in_flight=len(self._in_flight))
            return RefreshSummary()

        logger.info(
            "updater_pass_start",
            hot=len(due[Tier.HOT.value]),
            mild=len(due[Tier.MILD.value]),
            cold=len(due[Tier.COLD.value]),
            already_in_flight=len(ordered) - len(to_fetch),
        )
        summary = await self.refresh(to_fetch)
        logger.info("updater_pass_complete", **summary._asdict())
        return summary

    async def initialize(self) -> RefreshSummary | None:
        """Cold-start population: one refresh over the whole catalog."""
        logger.info("updater_initial_population_start", item_count=len(self._catalog))
        try:
            summary = await self.refresh(self._catalog.ids())
        except Exception as e:
            logger.error(
                "updater_initial_population_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        logger.info("updater_initial_population_complete", **summary._asdict())
        return summary

    def start_initial_population(self) -> asyncio.Task:
        """Run initialize() in the background; reads serve placeholders meanwhile."""
        if self._initial_task is None or self._initial_task.done():
            self._initial_task = asyncio.create_task(self.initialize())
        return self._initial_task

    # -----------------------------------------------------------------------
    # Refresh
    # -----------------------------------------------------------------------

    def _build_record(self, item_id: int, raw: dict[str, Any]) -> ItemRecord:
        snapshot = parse_snapshot(raw)
        tier = classify(snapshot)
        return ItemRecord.from_snapshot(
            self._catalog.entry_for(item_id),
            snapshot,
            tier,
            fetched_at=self._clock(),
            interval=interval_for(tier),
        )

    async def refresh(
        self,
        item_ids: Iterable[int],
        world_name: str | None = None,
    ) -> RefreshSummary:
        """
        Fetch, classify and store the given items.

        Batches run one after another through the fetch queue. Each record
        is written as soon as its batch is parsed, so readers see progress
        before the whole refresh finishes.
        """
        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return RefreshSummary()

        world = world_name or self._world_name
        size = self._client.max_items_per_call
        batches = [ids[i:i + size] for i in range(0, len(ids), size)]

        updated = skipped = failed_batches = store_failures = 0
        self._in_flight.update(ids)

        logger.info(
            "updater_refresh_start",
            world=world,
            item_count=len(ids),
            batch_count=len(batches),
        )

        try:
            for batch_number, batch in enumerate(batches, start=1):
                try:
                    payload = await self._client.fetch_market_data(batch, world)
                    raw_items = extract_items(payload)
                except Exception as e:
                    failed_batches += 1
                    logger.error(
                        "updater_batch_failed",
                        batch_number=batch_number,
                        total_batches=len(batches),
                        item_ids=batch,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    self._in_flight.difference_update(batch)
                    continue

                for item_id in batch:
                    raw = raw_items.get(item_id)
                    if raw is None:
                        skipped += 1
                        logger.warning(
                            "updater_item_missing_from_response",
                            item_id=item_id,
                            batch_number=batch_number,
                        )
                        continue

                    try:
                        record = self._build_record(item_id, raw)
                    except (ValueError, TypeError, AttributeError) as e:
                        skipped += 1
                        logger.warning(
                            "updater_item_parse_failed",
                            item_id=item_id,
                            batch_number=batch_number,
                            error=str(e)[:200],
                            error_type=type(e).__name__,
                        )
                        continue

                    if await self._store.upsert(record):
                        updated += 1
                    else:
                        store_failures += 1
                        logger.error("updater_item_store_failed", item_id=item_id)

                self._in_flight.difference_update(batch)
        finally:
            self._in_flight.difference_update(ids)

        summary = RefreshSummary(
            requested=len(ids),
            updated=updated,
            skipped=skipped,
            failed_batches=failed_batches,
            store_failures=store_failures,
        )
        logger.info("updater_refresh_complete", world=world, **summary._asdict())
        return summary

    # -----------------------------------------------------------------------
    # Reads (REST layer)
    # -----------------------------------------------------------------------

    async def get_item(self, item_id: int) -> ItemRecord | None:
        """Stored record, a placeholder for unfetched catalog ids, else None."""
        record = await self._store.get(item_id)
        if record is not None:
            return record
        entry = self._catalog.get(item_id)
        return ItemRecord.placeholder(entry) if entry else None

    async def get_items(self, item_ids: Iterable[int]) -> list[ItemRecord]:
        """Records for the given ids in request order; unknown ids are dropped."""
        items = []
        for item_id in item_ids:
            record = await self.get_item(item_id)
            if record is not None:
                items.append(record)
        return items

    async def get_all_items(self) -> list[ItemRecord]:
        """Every catalog item (placeholders filled) plus any stored extras."""
        stored = {record.id: record for record in await self._store.all()}
        items = [
            stored.pop(entry.id, None) or ItemRecord.placeholder(entry)
            for entry in self._catalog
        ]
        items.extend(stored.values())
        return items

    async def get_items_by_classification(self, tier: Tier | str) -> list[ItemRecord]:
        try:
            wanted = Tier(tier)
        except ValueError:
            return []

        items = await self._store.query_by_tier(wanted)
        if wanted is Tier.COLD:
            fetched = await self._store.ids()
            items.extend(
                ItemRecord.placeholder(entry)
                for entry in self._catalog
                if entry.id not in fetched
            )
        return items

    async def get_stats(self) -> dict[str, int]:
        items = await self.get_all_items()
        counts = Counter(record.classification for record in items)
        return {
            "total": len(items),
            **{tier.value: counts.get(tier, 0) for tier in _TIER_ORDER},
        }
