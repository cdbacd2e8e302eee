# models/asset_symbol_mapping.py
from database import Base
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, DateTime, func


class AssetSymbolMapping(Base):
    __tablename__ = "asset_symbol_mappings"

    # CoinCap asset id, e.g. "bitcoin"
    id: Mapped[str] = mapped_column(String(128), primary_key=True)

    # ticker shown to users, e.g. "BTC"
    symbol: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)

    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
