# services/coincap/client.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from schemas.coincap import CoinCapAssetResponse, CoinCapAssetsResponse, PriceQuote
from services.coincap.errors import (
    AuthError,
    ClientError,
    ConfigError,
    DecodeError,
    FetchTimeout,
    ServerError,
    TransportError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def build_http_client(timeout: float, max_connections: int) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
        limits=httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections),
    )


def normalize_asset_id(asset_id: str) -> str:
    """CoinCap ids are lower-case slugs ("bitcoin", "usd-coin")."""
    return (asset_id or "").strip().lower()


class CoinCapClient:
    """
    Async wrapper around the CoinCap REST API.

    Only two endpoints are used: the full asset listing (symbol mapping
    bootstrap) and the single-asset lookup (price sync + on-demand lookups).
    The client does not cache or retry; callers decide cadence and concurrency.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if api_key is None or not api_key.strip():
            raise ConfigError("CoinCap API key is required but not configured.")

        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key.strip()
        self.timeout = timeout
        self._shared_client = client

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    @asynccontextmanager
    async def _client(self):
        if self._shared_client is not None:
            yield self._shared_client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as c:
                yield c

    # ---------- low level ----------
    async def _get(self, path: str, model: Type[T]) -> T:
        url = f"{self.base_url}{path}"
        async with self._client() as c:
            try:
                r = await c.get(url, headers=self.headers)
            except httpx.TimeoutException as e:
                raise FetchTimeout(f"Timed out calling {path}: {e!r}") from e
            except httpx.TransportError as e:
                raise TransportError(f"Transport failure calling {path}: {e!r}") from e

        _raise_for_status(r)

        try:
            payload: Any = r.json()
        except ValueError as e:
            raise DecodeError(f"Non-JSON body from {path}: {r.text[:200]!r}") from e
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise DecodeError(f"Unexpected payload from {path}: {e.error_count()} validation errors") from e

    # ---------- endpoints ----------
    async def fetch_all_assets(self) -> CoinCapAssetsResponse:
        logger.info("Fetching CoinCap /assets data containing all asset types...")
        try:
            response = await self._get("/assets", CoinCapAssetsResponse)
        except AuthError:
            logger.error("CoinCap rejected the API key while fetching /assets")
            raise
        logger.info("Fetched %d assets.", len(response.data))
        return response

    async def fetch_latest_price(self, asset_id: str) -> PriceQuote:
        slug = normalize_asset_id(asset_id)
        if not slug:
            raise ValueError("asset_id must not be blank")

        logger.debug("Fetching CoinCap /assets/%s data...", slug)
        try:
            response = await self._get(f"/assets/{slug}", CoinCapAssetResponse)
        except AuthError:
            logger.error("CoinCap rejected the API key while fetching /assets/%s", slug)
            raise

        data = response.data
        if data.price_usd is None:
            raise DecodeError(f"CoinCap returned no priceUsd for {slug}")
        try:
            price = Decimal(data.price_usd)
        except InvalidOperation as e:
            raise DecodeError(f"Unparseable priceUsd {data.price_usd!r} for {slug}") from e
        if not price.is_finite():
            raise DecodeError(f"Non-finite priceUsd {data.price_usd!r} for {slug}")

        return PriceQuote(asset_id=data.id, symbol=data.symbol, price_usd=price)


def _raise_for_status(r: httpx.Response) -> None:
    status = r.status_code
    if status < 400:
        return
    body = r.text
    if status == 403:
        raise AuthError(status, body)
    if status < 500:
        raise ClientError(status, body)
    raise ServerError(status, body)
