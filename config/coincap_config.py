# config/coincap_config.py
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from services.coincap.errors import ConfigError

load_dotenv()

DEFAULT_MAX_CONCURRENT_FETCHES = 3
DEFAULT_TIMEOUT_SEC = 10.0


@dataclass(frozen=True)
class CoinCapSettings:
    api_base_url: str
    api_key: str
    refresh_interval_ms: int
    max_concurrent_fetches: int = DEFAULT_MAX_CONCURRENT_FETCHES
    timeout_sec: float = DEFAULT_TIMEOUT_SEC

    @property
    def refresh_interval_sec(self) -> float:
        return self.refresh_interval_ms / 1000.0


def _require(name: str) -> str:
    value = (os.getenv(name) or "").strip()
    if not value:
        raise ConfigError(f"{name} is required but not configured.")
    return value


def _int_env(name: str, default: Optional[int] = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        if default is None:
            raise ConfigError(f"{name} is required but not configured.")
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def load_coincap_settings() -> CoinCapSettings:
    """Read COINCAP_* env vars. The API key check runs first so nothing else is touched without it."""
    api_key = _require("COINCAP_API_KEY")
    api_base_url = _require("COINCAP_API_URL").rstrip("/")

    timeout_raw = (os.getenv("COINCAP_TIMEOUT_SEC") or "").strip()
    try:
        timeout_sec = float(timeout_raw) if timeout_raw else DEFAULT_TIMEOUT_SEC
    except ValueError:
        raise ConfigError(f"COINCAP_TIMEOUT_SEC must be a number, got {timeout_raw!r}")

    return CoinCapSettings(
        api_base_url=api_base_url,
        api_key=api_key,
        refresh_interval_ms=_int_env("COINCAP_REFRESH_RATE_MS"),
        max_concurrent_fetches=_int_env("COINCAP_MAX_CONCURRENT_FETCHES", DEFAULT_MAX_CONCURRENT_FETCHES),
        timeout_sec=timeout_sec,
    )
