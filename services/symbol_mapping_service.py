# services/symbol_mapping_service.py
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, List, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.asset_symbol_mapping import AssetSymbolMapping
from schemas.coincap import CoinCapAssetData
from services.coincap.client import CoinCapClient
from services.coincap.errors import MarketDataError

logger = logging.getLogger(__name__)


def find_mapping_by_symbol(db: Session, symbol: str) -> AssetSymbolMapping | None:
    # Exact match: "BTC" and "btc" are different tickers as far as the table is concerned.
    return db.execute(
        select(AssetSymbolMapping).where(AssetSymbolMapping.symbol == symbol)
    ).scalar_one_or_none()


def _dedupe_pairs(assets: Iterable[CoinCapAssetData]) -> List[Tuple[str, str]]:
    """
    (id, symbol) pairs with blank entries dropped and one id per symbol.

    CoinCap returns the listing ordered by market-cap rank, so when two ids share
    a ticker the first (higher ranked) one keeps it.
    """
    pairs: List[Tuple[str, str]] = []
    seen_ids: set[str] = set()
    seen_symbols: set[str] = set()
    for a in assets:
        asset_id = (a.id or "").strip()
        symbol = (a.symbol or "").strip()
        if not asset_id or not symbol:
            continue
        if asset_id in seen_ids or symbol in seen_symbols:
            logger.debug("Skipping duplicate mapping %s -> %s", symbol, asset_id)
            continue
        seen_ids.add(asset_id)
        seen_symbols.add(symbol)
        pairs.append((asset_id, symbol))
    return pairs


def upsert_symbol_mappings(db: Session, assets: Iterable[CoinCapAssetData]) -> int:
    """
    Insert or overwrite one row per (id, symbol) pair in a single transaction.

    A stored row that holds one of the incoming symbols under a different id
    is removed first so the unique index on ``symbol`` holds after the write.
    Rows whose id is not in the listing are kept.
    """
    pairs = _dedupe_pairs(assets)
    if not pairs:
        return 0

    incoming = dict(pairs)
    by_symbol = {symbol: asset_id for asset_id, symbol in pairs}

    try:
        existing = db.execute(
            select(AssetSymbolMapping).where(
                AssetSymbolMapping.symbol.in_(list(by_symbol))
            )
        ).scalars().all()
        stale = [row for row in existing if by_symbol.get(row.symbol) != row.id]
        for row in stale:
            db.delete(row)
        if stale:
            db.flush()

        # Every incoming symbol is now either free or already on the right id.
        current = {
            row.id: row
            for row in db.execute(
                select(AssetSymbolMapping).where(AssetSymbolMapping.id.in_(list(incoming)))
            ).scalars().all()
        }

        for asset_id, symbol in pairs:
            row = current.get(asset_id)
            if row is None:
                db.add(AssetSymbolMapping(id=asset_id, symbol=symbol))
            else:
                row.symbol = symbol

        db.commit()
    except Exception:
        db.rollback()
        raise

    return len(pairs)


def _save_listing(session_factory: Callable[[], Session], assets: List[CoinCapAssetData]) -> int:
    with session_factory() as db:
        return upsert_symbol_mappings(db, assets)


async def bootstrap_symbol_mappings(
    client: CoinCapClient,
    session_factory: Callable[[], Session],
) -> int:
    """
    Startup job: load the full CoinCap listing into ``asset_symbol_mappings``.

    Never raises for provider or database failures. The service keeps running
    with whatever mappings it already had, and only new asset additions are
    affected.
    """
    try:
        listing = await client.fetch_all_assets()
    except MarketDataError as e:
        logger.error("Error updating asset mappings on startup: %s", e)
        return 0

    try:
        saved = await asyncio.to_thread(_save_listing, session_factory, listing.data)
    except Exception:
        logger.exception("Error saving asset mappings on startup")
        return 0

    logger.info("Saved %d asset mappings.", saved)
    return saved
