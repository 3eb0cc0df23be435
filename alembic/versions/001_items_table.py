"""Items table: latest market snapshot per tracked item

Revision ID: 001_items_table
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001_items_table"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "items",
        sa.Column("id", sa.INTEGER(), autoincrement=False, nullable=False, comment="Universalis item ID"),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("tags", sa.Text(), nullable=False, server_default="[]", comment="JSON array of catalog tags"),
        sa.Column("market_data", sa.Text(), nullable=False, server_default="{}", comment="JSON-encoded MarketSnapshot"),
        sa.Column("classification", sa.String(), nullable=False, server_default="cold", comment="cold | mild | hot"),
        sa.Column("last_update", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("next_update", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_items_classification", "items", ["classification"])
    op.create_index("ix_items_next_update", "items", ["next_update"])


def downgrade() -> None:
    op.drop_index("ix_items_next_update", table_name="items")
    op.drop_index("ix_items_classification", table_name="items")
    op.drop_table("items")
