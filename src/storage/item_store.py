"""
Universalis Tracker - Item Store

Durable map of item id -> ItemRecord with the three queries the tracker
needs: by id, by classification, and "due" (next_update <= now).

The orchestrator and the REST layer depend only on the ItemStore interface:
- InMemoryItemStore: dict-backed, used by tests and the one-shot CLI dry runs.
- SqlItemStore: SQLAlchemy 2.0 async (SQLite via aiosqlite by default,
  PostgreSQL supported).

SqlItemStore never raises to its callers. A failing operation is logged, the
engine and schema are rebuilt once and the operation retried; if it still
fails, reads return an empty default and writes return False. Rows that
cannot be read back are logged and left out of read results.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, TypeVar

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.config import Tier, settings
from src.models.item import Item
from src.models.records import ItemRecord, MarketSnapshot

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _as_tier(value: Any) -> Tier | None:
    try:
        return Tier(value)
    except ValueError:
        return None


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on the way back; stored values are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ItemStore(ABC):
    """Keyed persistence of one ItemRecord per item id."""

    async def initialize(self) -> None:
        """Prepare the backing storage. Safe to call more than once."""

    async def close(self) -> None:
        """Release backing resources."""

    @abstractmethod
    async def get(self, item_id: int) -> ItemRecord | None: ...

    @abstractmethod
    async def upsert(self, record: ItemRecord) -> bool:
        """Insert or replace the record for record.id. Returns success."""

    @abstractmethod
    async def query_by_tier(self, tier: Tier | str) -> list[ItemRecord]: ...

    @abstractmethod
    async def query_due(self, now: datetime) -> list[ItemRecord]:
        """Records whose next_update is set and <= now."""

    @abstractmethod
    async def all(self) -> list[ItemRecord]: ...

    @abstractmethod
    async def ids(self) -> set[int]: ...

    @abstractmethod
    async def count(self) -> int: ...


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryItemStore(ItemStore):
    """Dict-backed store. Records are copied in and out."""

    def __init__(self) -> None:
        self._records: dict[int, ItemRecord] = {}

    async def get(self, item_id: int) -> ItemRecord | None:
        record = self._records.get(item_id)
        return record.model_copy(deep=True) if record else None

    async def upsert(self, record: ItemRecord) -> bool:
        self._records[record.id] = record.model_copy(deep=True)
        return True

    async def query_by_tier(self, tier: Tier | str) -> list[ItemRecord]:
        wanted = _as_tier(tier)
        return [
            record.model_copy(deep=True)
            for _, record in sorted(self._records.items())
            if record.classification == wanted
        ]

    async def query_due(self, now: datetime) -> list[ItemRecord]:
        cutoff = _as_utc(now)
        return [
            record.model_copy(deep=True)
            for _, record in sorted(self._records.items())
            if record.next_update is not None and _as_utc(record.next_update) <= cutoff
        ]

    async def all(self) -> list[ItemRecord]:
        return [record.model_copy(deep=True) for _, record in sorted(self._records.items())]

    async def ids(self) -> set[int]:
        return set(self._records)

    async def count(self) -> int:
        return len(self._records)


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------


class SqlItemStore(ItemStore):
    """
    SQLAlchemy async store over the items table.

    Usage:
        store = SqlItemStore("sqlite+aiosqlite:///data/items.db")
        await store.initialize()
        await store.upsert(record)
    """

    def __init__(self, database_url: str | None = None, **engine_kwargs: Any):
        self._database_url = database_url or settings.DATABASE_URL
        self._engine_kwargs = engine_kwargs
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def database_url(self) -> str:
        return self._database_url

    def _ensure_sqlite_directory(self) -> None:
        url = make_url(self._database_url)
        if not url.get_backend_name() == "sqlite":
            return
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    async def initialize(self) -> None:
        if self._engine is not None:
            return

        self._ensure_sqlite_directory()
        engine = create_async_engine(self._database_url, echo=False, **self._engine_kwargs)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Item.__table__.create, checkfirst=True)
        except BaseException:
            await engine.dispose()
            raise

        self._engine = engine
        self._session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("item_store_initialized", database_url=self._database_url)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("item_store_closed")
        self._engine = None
        self._session_factory = None

    async def _reinitialize(self) -> None:
        logger.warning("item_store_reinitializing", database_url=self._database_url)
        try:
            await self.close()
            await self.initialize()
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                "item_store_reinitialize_failed",
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _safe(
        self,
        operation_name: str,
        operation: Callable[[AsyncSession], Awaitable[T]],
        default: T,
    ) -> T:
        """Run operation in a session; rebuild and retry once on failure."""
        for attempt in range(2):
            try:
                if self._session_factory is None:
                    await self.initialize()
                assert self._session_factory is not None
                async with self._session_factory() as session:
                    return await operation(session)
            except (SQLAlchemyError, OSError) as e:
                logger.error(
                    "item_store_operation_failed",
                    operation=operation_name,
                    attempt=attempt + 1,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                if attempt == 0:
                    await self._reinitialize()
            except (ValueError, TypeError) as e:
                logger.error(
                    "item_store_bad_data",
                    operation=operation_name,
                    error=str(e)[:200],
                    error_type=type(e).__name__,
                )
                return default
        return default

    # -----------------------------------------------------------------------
    # Row mapping
    # -----------------------------------------------------------------------

    @staticmethod
    def _to_record(row: Item) -> ItemRecord:
        try:
            tags = json.loads(row.tags or "[]")
        except ValueError:
            tags = []

        try:
            market_data = MarketSnapshot.model_validate_json(row.market_data or "{}")
        except ValueError as e:
            logger.warning("item_store_bad_market_data", item_id=row.id, error=str(e)[:200])
            market_data = MarketSnapshot.placeholder()

        return ItemRecord(
            id=row.id,
            name=row.name,
            tags=tags if isinstance(tags, list) else [],
            market_data=market_data,
            classification=_as_tier(row.classification) or Tier.COLD,
            last_update=_as_utc(row.last_update),
            next_update=_as_utc(row.next_update),
        )

    @classmethod
    def _to_records(cls, rows: Iterable[Item]) -> list[ItemRecord]:
        """Map rows to records, dropping any row that cannot be read back."""
        records = []
        for row in rows:
            try:
                records.append(cls._to_record(row))
            except (ValueError, TypeError) as e:
                logger.warning("item_store_bad_row", item_id=row.id, error=str(e)[:200])
        return records

    @staticmethod
    def _to_values(record: ItemRecord) -> dict[str, Any]:
        return {
            "id": record.id,
            "name": record.name,
            "tags": json.dumps(record.tags),
            "market_data": record.market_data.model_dump_json(by_alias=True),
            "classification": record.classification.value,
            "last_update": _as_utc(record.last_update),
            "next_update": _as_utc(record.next_update),
        }

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def get(self, item_id: int) -> ItemRecord | None:
        async def op(session: AsyncSession) -> ItemRecord | None:
            row = await session.get(Item, item_id)
            records = self._to_records([row]) if row is not None else []
            return records[0] if records else None

        return await self._safe("get", op, None)

    async def upsert(self, record: ItemRecord) -> bool:
        values = self._to_values(record)

        async def op(session: AsyncSession) -> bool:
            dialect = session.get_bind().dialect.name
            if dialect in ("sqlite", "postgresql"):
                insert = sqlite_insert if dialect == "sqlite" else pg_insert
                stmt = insert(Item).values(**values)
                update_columns = {
                    key: stmt.excluded[key] for key in values if key != "id"
                }
                update_columns["updated_at"] = func.now()
                stmt = stmt.on_conflict_do_update(
                    index_elements=["id"],
                    set_=update_columns,
                )
                await session.execute(stmt)
            else:
                await session.merge(Item(**values))
            await session.commit()
            return True

        stored = await self._safe("upsert", op, False)
        if stored:
            logger.debug(
                "item_stored",
                item_id=record.id,
                classification=record.classification.value,
            )
        return stored

    async def query_by_tier(self, tier: Tier | str) -> list[ItemRecord]:
        wanted = _as_tier(tier)
        if wanted is None:
            return []

        async def op(session: AsyncSession) -> list[ItemRecord]:
            result = await session.execute(
                select(Item).where(Item.classification == wanted.value).order_by(Item.id)
            )
            return self._to_records(result.scalars().all())

        return await self._safe("query_by_tier", op, [])

    async def query_due(self, now: datetime) -> list[ItemRecord]:
        cutoff = _as_utc(now)

        async def op(session: AsyncSession) -> list[ItemRecord]:
            result = await session.execute(
                select(Item)
                .where(Item.next_update.is_not(None), Item.next_update <= cutoff)
                .order_by(Item.id)
            )
            return self._to_records(result.scalars().all())

        return await self._safe("query_due", op, [])

    async def all(self) -> list[ItemRecord]:
        async def op(session: AsyncSession) -> list[ItemRecord]:
            result = await session.execute(select(Item).order_by(Item.id))
            return self._to_records(result.scalars().all())

        return await self._safe("all", op, [])

    async def ids(self) -> set[int]:
        async def op(session: AsyncSession) -> set[int]:
            result = await session.execute(select(Item.id))
            return set(result.scalars().all())

        return await self._safe("ids", op, set())

    async def count(self) -> int:
        async def op(session: AsyncSession) -> int:
            result = await session.execute(select(func.count()).select_from(Item))
            return int(result.scalar_one())

        return await self._safe("count", op, 0)
