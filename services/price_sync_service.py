# services/price_sync_service.py
"""
Scheduled price synchronization for every asset held in any wallet.

One cycle:
  1. read the distinct CoinCap ids held across wallets,
  2. fetch each latest price with at most ``max_concurrent_fetches`` requests in flight,
  3. write each successful price back in its own transaction.

SQLAlchemy sessions are synchronous, so every database read and write runs
in a worker thread via ``asyncio.to_thread`` and the event loop stays free
for in-flight fetches and API requests.

A failed fetch or a failed write only drops that asset from the cycle. The
loop is fixed-delay: the next cycle is scheduled ``refresh_interval_sec``
after the previous one finished, so cycles never overlap.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from services.coincap.client import CoinCapClient, normalize_asset_id
from services.coincap.errors import AuthError, MarketDataError
from services.ledger_service import find_distinct_held_asset_names, update_price_by_name

logger = logging.getLogger(__name__)


@dataclass
class SyncCycleResult:
    targets: List[str] = field(default_factory=list)
    updated: Dict[str, Decimal] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)
    write_failed: Dict[str, str] = field(default_factory=dict)
    auth_failures: int = 0

    @property
    def skipped(self) -> bool:
        return not self.targets

    def to_dict(self) -> dict:
        return {
            "targets": len(self.targets),
            "updated": sorted(self.updated),
            "failed": dict(self.failed),
            "write_failed": dict(self.write_failed),
            "auth_failures": self.auth_failures,
        }


class PriceSynchronizer:
    def __init__(
        self,
        client: CoinCapClient,
        session_factory: Callable[[], Session],
        *,
        refresh_interval_sec: float,
        max_concurrent_fetches: int = 3,
    ):
        if max_concurrent_fetches < 1:
            raise ValueError("max_concurrent_fetches must be >= 1")
        self.client = client
        self.session_factory = session_factory
        self.refresh_interval_sec = refresh_interval_sec
        self.max_concurrent_fetches = max_concurrent_fetches

        self._cycle_lock = asyncio.Lock()
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.cycles_completed = 0
        self.last_result: Optional[SyncCycleResult] = None

    # ---------- one cycle ----------
    async def run_cycle(self) -> SyncCycleResult:
        async with self._cycle_lock:
            result = await self._run_cycle_locked()
        self.cycles_completed += 1
        self.last_result = result
        return result

    async def _run_cycle_locked(self) -> SyncCycleResult:
        logger.info(
            "Initiating scheduled asset price update, next run %.0fs after this one completes",
            self.refresh_interval_sec,
        )
        names = sorted(await asyncio.to_thread(self._read_targets))

        result = SyncCycleResult(targets=names)
        if not names:
            logger.info("No asset prices to update - skipping cycle.")
            return result

        logger.info("Updating prices for %d distinct assets: %s", len(names), names)
        sem = asyncio.Semaphore(self.max_concurrent_fetches)

        outcomes = await asyncio.gather(
            *[self._sync_one(name, sem, result) for name in names],
            return_exceptions=True,
        )
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, Exception):
                # Anything not already classified by _sync_one.
                logger.error("Unexpected error syncing %s: %r", name, outcome)
                result.failed[name] = repr(outcome)

        if result.auth_failures:
            logger.error(
                "CoinCap rejected the API key for %d of %d assets; check COINCAP_API_KEY",
                result.auth_failures, len(names),
            )
        logger.info(
            "Updated asset prices for %d distinct assets (%d fetch failures, %d write failures)",
            len(result.updated), len(result.failed), len(result.write_failed),
        )
        return result

    async def _sync_one(self, name: str, sem: asyncio.Semaphore, result: SyncCycleResult) -> None:
        async with sem:
            try:
                quote = await self.client.fetch_latest_price(normalize_asset_id(name))
            except MarketDataError as e:
                if isinstance(e, AuthError):
                    result.auth_failures += 1
                logger.warning(
                    "Price fetch failed for %s: %s", name, e,
                    extra={"asset": name, "error_type": type(e).__name__},
                )
                result.failed[name] = str(e)
                return

        try:
            rows = await asyncio.to_thread(self._write_price, name, quote.price_usd)
        except SQLAlchemyError as e:
            logger.error("Price write-back failed for %s: %s", name, e, extra={"asset": name})
            result.write_failed[name] = str(e)
            return

        logger.debug("Set %s price_usd=%s on %d positions", name, quote.price_usd, rows)
        result.updated[name] = quote.price_usd

    def _read_targets(self) -> Set[str]:
        with self.session_factory() as db:
            return find_distinct_held_asset_names(db)

    def _write_price(self, name: str, price: Decimal) -> int:
        with self.session_factory() as db:
            return update_price_by_name(db, name, price)

    # ---------- scheduling ----------
    async def run_forever(self) -> None:
        while not self._stop.is_set():
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error updating asset prices")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.refresh_interval_sec)
            except asyncio.TimeoutError:
                pass

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self.run_forever(), name="price-sync")
        return self._task

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            try:
                await self._task
            finally:
                self._task = None
