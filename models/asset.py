# models/asset.py
from decimal import Decimal

from database import Base
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, UniqueConstraint

from models.types import ExactDecimal


class Asset(Base):
    """One position held in a wallet. ``name`` is the CoinCap asset id."""

    __tablename__ = "assets"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    wallet_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    quantity: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False)
    price_usd: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False, default=Decimal("0"))

    __table_args__ = (
        UniqueConstraint("wallet_id", "symbol", name="uq_assets_wallet_symbol"),
    )
