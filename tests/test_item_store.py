"""
Tests for item persistence (src/storage/item_store.py).

Both implementations run through the same contract tests via the any_store
fixture; SqlItemStore additionally covers corrupt rows and self-healing.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

from sqlalchemy import insert, text

from conftest import FIXED_NOW, raw_item
from src.config import Tier
from src.engine.classifier import interval_for
from src.models.item import Item
from src.models.records import CatalogEntry, ItemRecord, MarketSnapshot
from src.pipeline.universalis import parse_snapshot
from src.storage.item_store import SqlItemStore


def _record(item_id: int, tier: Tier = Tier.COLD, fetched_at=FIXED_NOW, units_sold: int = 10) -> ItemRecord:
    entry = CatalogEntry(id=item_id, display_name=f"Item {item_id}", tags=("crystal",))
    return ItemRecord.from_snapshot(
        entry,
        parse_snapshot(raw_item(item_id, units_sold)),
        tier,
        fetched_at=fetched_at,
        interval=interval_for(tier),
    )


# ---------------------------------------------------------------------------
# Test 1: upsert is idempotent and replaces wholesale
# ---------------------------------------------------------------------------


async def test_upsert_then_get_round_trips(any_store) -> None:
    record = _record(1, Tier.HOT, units_sold=1500)

    assert await any_store.upsert(record) is True
    stored = await any_store.get(1)

    assert stored == record
    assert stored.next_update == FIXED_NOW + interval_for(Tier.HOT)
    assert stored.market_data.units_sold == 1500


async def test_upsert_is_idempotent(any_store) -> None:
    record = _record(1, Tier.MILD, units_sold=500)

    await any_store.upsert(record)
    await any_store.upsert(record)

    assert await any_store.count() == 1
    assert await any_store.get(1) == record


async def test_upsert_replaces_previous_record(any_store) -> None:
    await any_store.upsert(_record(1, Tier.HOT, units_sold=1500))
    later = _record(1, Tier.COLD, fetched_at=FIXED_NOW + timedelta(minutes=1), units_sold=3)
    await any_store.upsert(later)

    stored = await any_store.get(1)
    assert stored.classification is Tier.COLD
    assert stored.market_data.units_sold == 3
    assert stored.last_update == FIXED_NOW + timedelta(minutes=1)
    assert await any_store.count() == 1


async def test_get_unknown_returns_none(any_store) -> None:
    assert await any_store.get(404) is None


# ---------------------------------------------------------------------------
# Test 2: queries
# ---------------------------------------------------------------------------


async def test_query_by_tier(any_store) -> None:
    await any_store.upsert(_record(1, Tier.HOT))
    await any_store.upsert(_record(2, Tier.COLD))
    await any_store.upsert(_record(3, Tier.HOT))

    hot = await any_store.query_by_tier(Tier.HOT)
    assert [record.id for record in hot] == [1, 3]
    assert [record.id for record in await any_store.query_by_tier("cold")] == [2]
    assert await any_store.query_by_tier("lukewarm") == []


async def test_query_due_uses_next_update(any_store) -> None:
    await any_store.upsert(_record(1, Tier.HOT))    # due at +1 minute
    await any_store.upsert(_record(2, Tier.MILD))   # due at +1 hour
    await any_store.upsert(_record(3, Tier.COLD))   # due at +1 day

    assert await any_store.query_due(FIXED_NOW) == []

    due_ids = [r.id for r in await any_store.query_due(FIXED_NOW + timedelta(minutes=1))]
    assert due_ids == [1]

    due_ids = [r.id for r in await any_store.query_due(FIXED_NOW + timedelta(days=2))]
    assert due_ids == [1, 2, 3]


async def test_query_due_skips_records_without_next_update(any_store) -> None:
    placeholder = ItemRecord.placeholder(CatalogEntry(id=7, display_name="Never Fetched"))
    await any_store.upsert(placeholder)

    assert await any_store.query_due(FIXED_NOW + timedelta(days=365)) == []


async def test_all_and_ids(any_store) -> None:
    await any_store.upsert(_record(5))
    await any_store.upsert(_record(2))

    assert [record.id for record in await any_store.all()] == [2, 5]
    assert await any_store.ids() == {2, 5}
    assert await any_store.count() == 2


async def test_memory_store_returns_copies(memory_store) -> None:
    record = _record(1)
    await memory_store.upsert(record)

    fetched = await memory_store.get(1)
    fetched.tags.append("mutated")

    assert (await memory_store.get(1)).tags == ["crystal"]


# ---------------------------------------------------------------------------
# Test 3: SqlItemStore resilience
# ---------------------------------------------------------------------------


async def test_corrupt_market_data_reads_as_placeholder(sql_store) -> None:
    async with sql_store._engine.begin() as conn:
        await conn.execute(
            insert(Item).values(
                id=9,
                name="Broken",
                tags="not json",
                market_data="{not json",
                classification="hot",
                next_update=FIXED_NOW,
            )
        )

    record = await sql_store.get(9)

    assert record.name == "Broken"
    assert record.tags == []
    assert record.market_data == MarketSnapshot.placeholder()
    assert record.classification is Tier.HOT


async def test_unknown_classification_reads_as_cold(sql_store) -> None:
    async with sql_store._engine.begin() as conn:
        await conn.execute(insert(Item).values(id=4, name="Odd", classification="lukewarm"))

    assert (await sql_store.get(4)).classification is Tier.COLD


async def test_unreadable_row_left_out_of_reads(sql_store) -> None:
    await sql_store.upsert(_record(1, Tier.HOT))
    async with sql_store._engine.begin() as conn:
        await conn.execute(
            insert(Item).values(id=8, name="Numbered", tags="[1, 2]", classification="hot")
        )

    assert await sql_store.get(8) is None
    assert [record.id for record in await sql_store.all()] == [1]
    assert [record.id for record in await sql_store.query_by_tier(Tier.HOT)] == [1]
    assert await sql_store.ids() == {1, 8}


async def test_undecodable_timestamp_returns_default(sql_store) -> None:
    async with sql_store._engine.begin() as conn:
        await conn.execute(
            text(
                "INSERT INTO items (id, name, tags, market_data, classification, last_update) "
                "VALUES (7, 'Warped', '[]', '{}', 'cold', 'not a date')"
            )
        )
    sql_store._reinitialize = AsyncMock()

    assert await sql_store.get(7) is None
    assert await sql_store.all() == []
    sql_store._reinitialize.assert_not_awaited()


async def test_store_self_heals_after_losing_schema(sql_store) -> None:
    """A failing operation rebuilds the engine and schema, then retries."""
    async with sql_store._engine.begin() as conn:
        await conn.run_sync(Item.__table__.drop)

    assert await sql_store.upsert(_record(1, Tier.HOT)) is True
    assert (await sql_store.get(1)).classification is Tier.HOT


async def test_store_returns_defaults_when_retry_fails(sql_store) -> None:
    async with sql_store._engine.begin() as conn:
        await conn.run_sync(Item.__table__.drop)
    sql_store._reinitialize = AsyncMock()

    assert await sql_store.upsert(_record(1)) is False
    assert await sql_store.get(1) is None
    assert await sql_store.all() == []
    assert await sql_store.ids() == set()
    assert await sql_store.count() == 0
    assert sql_store._reinitialize.await_count == 5


async def test_initialize_is_idempotent(sql_store) -> None:
    engine = sql_store._engine
    await sql_store.initialize()

    assert sql_store._engine is engine


async def test_file_database_directory_created(tmp_path) -> None:
    db_path = tmp_path / "nested" / "items.db"
    store = SqlItemStore(f"sqlite+aiosqlite:///{db_path}")
    await store.initialize()
    try:
        await store.upsert(_record(1))
        assert db_path.exists()
        assert await store.count() == 1
    finally:
        await store.close()
