from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CoinCapAssetData(BaseModel):
    """One entry of ``GET /assets`` or the ``data`` object of ``GET /assets/{id}``."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)

    id: str
    symbol: str
    name: Optional[str] = None
    # Kept as text so Decimal(...) sees exactly what CoinCap sent.
    price_usd: Optional[str] = Field(default=None, alias="priceUsd")


class CoinCapAssetsResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: List[CoinCapAssetData] = Field(default_factory=list)


class CoinCapAssetResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: CoinCapAssetData


class PriceQuote(BaseModel):
    model_config = ConfigDict(frozen=True)

    asset_id: str
    symbol: str
    price_usd: Decimal


class PriceQuoteOut(BaseModel):
    asset_id: str
    symbol: str
    price_usd: str

    @classmethod
    def from_quote(cls, quote: PriceQuote) -> "PriceQuoteOut":
        # str() keeps the provider's precision; JSON floats would not
        return cls(asset_id=quote.asset_id, symbol=quote.symbol, price_usd=str(quote.price_usd))


class SyncCycleOut(BaseModel):
    targets: int
    updated: List[str]
    failed: dict[str, str]
    write_failed: dict[str, str]
    auth_failures: int


class SyncStatusOut(BaseModel):
    running: bool
    cycles_completed: int
    refresh_interval_sec: float
    max_concurrent_fetches: int
    last_cycle: Optional[SyncCycleOut] = None
