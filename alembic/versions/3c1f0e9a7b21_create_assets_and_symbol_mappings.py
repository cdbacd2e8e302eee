"""create assets and asset_symbol_mappings

Revision ID: 3c1f0e9a7b21
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "3c1f0e9a7b21"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Matches models.types.ExactDecimal: text on SQLite, unconstrained NUMERIC elsewhere.
EXACT_DECIMAL = sa.Numeric().with_variant(sa.String(length=80), "sqlite")


def upgrade() -> None:
    op.create_table(
        "asset_symbol_mappings",
        sa.Column("id", sa.String(length=128), primary_key=True),
        sa.Column("symbol", sa.String(length=32), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_asset_symbol_mappings_symbol", "asset_symbol_mappings", ["symbol"], unique=True)

    op.create_table(
        "assets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("wallet_id", sa.Integer(), nullable=False),
        sa.Column("symbol", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("quantity", EXACT_DECIMAL, nullable=False),
        sa.Column("price_usd", EXACT_DECIMAL, nullable=False),
        sa.UniqueConstraint("wallet_id", "symbol", name="uq_assets_wallet_symbol"),
    )
    op.create_index("ix_assets_id", "assets", ["id"], unique=False)
    op.create_index("ix_assets_wallet_id", "assets", ["wallet_id"], unique=False)
    op.create_index("ix_assets_name", "assets", ["name"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_assets_name", table_name="assets")
    op.drop_index("ix_assets_wallet_id", table_name="assets")
    op.drop_index("ix_assets_id", table_name="assets")
    op.drop_table("assets")
    op.drop_index("ix_asset_symbol_mappings_symbol", table_name="asset_symbol_mappings")
    op.drop_table("asset_symbol_mappings")
