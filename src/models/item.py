"""
Universalis Tracker - Item Table Model

One row per catalog item holding the latest snapshot. Nested structures
(market_data, tags) are stored as JSON text so the table stays portable
between SQLite and PostgreSQL.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import INTEGER, TIMESTAMP, Index, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for the tracker tables."""


class Item(Base):
    """
    Latest market snapshot per item.

    Queried three ways: by primary key, by classification (dashboard filters)
    and by next_update <= now (scheduler due check). Both secondary lookups
    are indexed.
    """

    __tablename__ = "items"

    id: Mapped[int] = mapped_column(
        INTEGER, primary_key=True, autoincrement=False, comment="Universalis item ID"
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    tags: Mapped[str] = mapped_column(
        Text, nullable=False, default="[]", comment="JSON array of catalog tags"
    )
    market_data: Mapped[str] = mapped_column(
        Text, nullable=False, default="{}", comment="JSON-encoded MarketSnapshot"
    )
    classification: Mapped[str] = mapped_column(
        String, nullable=False, default="cold", comment="cold | mild | hot"
    )
    last_update: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    next_update: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_items_classification", "classification"),
        Index("ix_items_next_update", "next_update"),
    )

    def __repr__(self) -> str:
        return (
            f"<Item id={self.id} name={self.name!r} "
            f"classification={self.classification!r} next_update={self.next_update}>"
        )
