# services/price_lookup_service.py
from __future__ import annotations

import asyncio
import logging

from sqlalchemy.orm import Session

from schemas.coincap import PriceQuote
from services.coincap.client import CoinCapClient
from services.coincap.errors import MarketDataError, PriceUnavailable, UnknownSymbol
from services.symbol_mapping_service import find_mapping_by_symbol

logger = logging.getLogger(__name__)


async def lookup_and_fetch_price(db: Session, client: CoinCapClient, symbol: str) -> PriceQuote:
    """
    Resolve a ticker through the symbol mapping table and fetch its price now.

    Used by wallet mutations that need a price before persisting a position.
    Raises UnknownSymbol when the ticker has no mapping and PriceUnavailable
    (with the provider error as ``cause``) when CoinCap cannot answer.
    """
    logger.info("Checking asset symbol mapping for symbol: %s", symbol)
    mapping = await asyncio.to_thread(find_mapping_by_symbol, db, symbol)
    if mapping is None:
        logger.error("No asset mapping exists for symbol: %s", symbol)
        raise UnknownSymbol(symbol)

    try:
        return await client.fetch_latest_price(mapping.id)
    except MarketDataError as e:
        logger.error("CoinCap data not retrieved for %s (%s): %s", symbol, mapping.id, e)
        raise PriceUnavailable(symbol, e) from e
