"""
Logging setup for the price sync service.

LOG_LEVEL picks the root level (default INFO). LOG_JSON=1 switches stdout to
one JSON object per line, with any ``extra={...}`` fields (asset, route,
status, duration_ms) lifted to top-level keys.

The CoinCap key rides in the Authorization header, so the HTTP client
libraries stay at WARNING and never echo request headers.
"""
import json
import logging
import os
import sys

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key in payload or value is None:
                continue
            payload[key] = value
        if record.exc_info and record.exc_info[0]:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _json_enabled() -> bool:
    return os.getenv("LOG_JSON", "").strip().lower() in ("1", "true", "yes")


def configure_logging() -> None:
    level = getattr(logging, (os.getenv("LOG_LEVEL") or "INFO").upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if _json_enabled():
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

    root = logging.getLogger()
    root.setLevel(level)
    # uvicorn --reload imports the app again; keep a single handler
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
