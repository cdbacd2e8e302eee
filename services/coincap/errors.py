# services/coincap/errors.py
"""
Error taxonomy for the CoinCap integration.

Per-call errors (AuthError, ClientError, ServerError, TransportError,
DecodeError) all derive from MarketDataError so the price sync can catch
them at the worker boundary in one place. ConfigError is raised at startup
only and is never caught by the service itself.
"""
from __future__ import annotations

from typing import Optional


class ConfigError(Exception):
    """Missing or invalid CoinCap configuration. Fatal at startup."""


class MarketDataError(Exception):
    """Base for every failure talking to the market-data provider."""


class HttpStatusError(MarketDataError):
    def __init__(self, status_code: int, body: str, message: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"HTTP {status_code}. Body: {body}")


class AuthError(HttpStatusError):
    """403 from CoinCap: the API key itself was rejected."""

    def __init__(self, status_code: int, body: str):
        super().__init__(status_code, body, f"Invalid API Key: {status_code} Forbidden. Response: {body}")


class ClientError(HttpStatusError):
    def __init__(self, status_code: int, body: str):
        super().__init__(status_code, body, f"Client error: {status_code}. Body: {body}")


class ServerError(HttpStatusError):
    def __init__(self, status_code: int, body: str):
        super().__init__(status_code, body, f"Server error: {status_code}. Body: {body}")


class TransportError(MarketDataError):
    """Connection failure, reset, DNS error... anything below HTTP."""


class FetchTimeout(TransportError):
    pass


class DecodeError(MarketDataError):
    """2xx response whose body is not the JSON shape we expect."""


class UnknownSymbol(Exception):
    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(f"Invalid incoming Symbol, no Asset exists for Symbol: {symbol}")


class PriceUnavailable(Exception):
    def __init__(self, symbol: str, cause: MarketDataError):
        self.symbol = symbol
        self.cause = cause
        super().__init__(f"CoinCap data not retrieved for {symbol}: {cause}")
