# main.py
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from config.coincap_config import load_coincap_settings
from config.logging_config import configure_logging
from database import SessionLocal, init_db
from middleware.request_logging import RequestLoggingMiddleware
from routers.price_routes import router as price_router
from services.coincap.client import CoinCapClient, build_http_client
from services.price_sync_service import PriceSynchronizer
from services.symbol_mapping_service import bootstrap_symbol_mappings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    # Raises ConfigError on a blank key, so startup aborts before any HTTP call.
    settings = load_coincap_settings()
    init_db()

    http_client = build_http_client(settings.timeout_sec, settings.max_concurrent_fetches + 2)
    client = CoinCapClient(
        base_url=settings.api_base_url,
        api_key=settings.api_key,
        timeout=settings.timeout_sec,
        client=http_client,
    )
    synchronizer = PriceSynchronizer(
        client,
        SessionLocal,
        refresh_interval_sec=settings.refresh_interval_sec,
        max_concurrent_fetches=settings.max_concurrent_fetches,
    )
    app.state.coincap_client = client
    app.state.session_factory = SessionLocal
    app.state.price_synchronizer = synchronizer

    # Mapping bootstrap runs in the background; readiness does not wait on CoinCap.
    bootstrap_task = asyncio.create_task(
        bootstrap_symbol_mappings(client, SessionLocal), name="symbol-mapping-bootstrap"
    )
    synchronizer.start()
    logger.info(
        "Price sync started: every %dms after completion, max %d concurrent fetches",
        settings.refresh_interval_ms, settings.max_concurrent_fetches,
    )

    try:
        yield
    finally:
        await synchronizer.stop()
        if not bootstrap_task.done():
            bootstrap_task.cancel()
        await asyncio.gather(bootstrap_task, return_exceptions=True)
        await http_client.aclose()


app = FastAPI(lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(price_router, prefix="/api/prices")
