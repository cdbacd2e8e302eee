# routers/price_routes.py
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from database import get_db
from schemas.coincap import PriceQuoteOut, SyncCycleOut, SyncStatusOut
from services.coincap.client import CoinCapClient
from services.coincap.errors import PriceUnavailable, UnknownSymbol
from services.price_lookup_service import lookup_and_fetch_price
from services.price_sync_service import PriceSynchronizer
from services.symbol_mapping_service import bootstrap_symbol_mappings

router = APIRouter()


def get_coincap_client(request: Request) -> CoinCapClient:
    return request.app.state.coincap_client


def get_session_factory(request: Request):
    return request.app.state.session_factory


def get_price_synchronizer(request: Request) -> PriceSynchronizer:
    return request.app.state.price_synchronizer


@router.get("/{symbol}", response_model=PriceQuoteOut)
async def get_symbol_price(
    symbol: str,
    db: Session = Depends(get_db),
    client: CoinCapClient = Depends(get_coincap_client),
):
    try:
        quote = await lookup_and_fetch_price(db, client, symbol)
    except UnknownSymbol as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PriceUnavailable as e:
        raise HTTPException(status_code=502, detail=str(e))
    return PriceQuoteOut.from_quote(quote)


@router.get("/sync/status", response_model=SyncStatusOut)
async def sync_status(
    synchronizer: PriceSynchronizer = Depends(get_price_synchronizer),
):
    last = synchronizer.last_result
    return {
        "running": synchronizer.running,
        "cycles_completed": synchronizer.cycles_completed,
        "refresh_interval_sec": synchronizer.refresh_interval_sec,
        "max_concurrent_fetches": synchronizer.max_concurrent_fetches,
        "last_cycle": last.to_dict() if last is not None else None,
    }


@router.post("/sync", response_model=SyncCycleOut)
async def sync_prices_now(
    synchronizer: PriceSynchronizer = Depends(get_price_synchronizer),
):
    """
    Run one price sync cycle immediately.
    Waits for a scheduled cycle in progress to finish first.
    """
    result = await synchronizer.run_cycle()
    return result.to_dict()


@router.post("/refresh-mappings")
async def refresh_symbol_mappings(
    client: CoinCapClient = Depends(get_coincap_client),
    session_factory=Depends(get_session_factory),
):
    saved = await bootstrap_symbol_mappings(client, session_factory)
    return {"status": "ok", "saved": saved}
