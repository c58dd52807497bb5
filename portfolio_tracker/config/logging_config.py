"""
Central logging configuration for the ledger service.

- JSON lines when LOG_JSON=1, plain text otherwise.
- LOG_LEVEL from env (default INFO).
- PRICE_LOG_LEVEL tunes the price simulator on its own; a failing store
  produces one warning per position per tick.
- LOG_SQL=1 echoes SQLAlchemy statements at INFO.
- Log owner and row ids only, never usernames or free-text notes. Pass them
  as `extra={"owner_id": ...}` to get them as JSON fields.
"""
import json
import logging
import os
import sys
from typing import Any, Optional

# ids copied from `extra=` into the JSON payload
LEDGER_FIELDS = ("owner_id", "position_id", "transaction_id")

PRICE_LOGGER = "portfolio_tracker.services.price_simulator"

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _json_serial(obj: Any):
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes")


def _env_level(name: str, default: Optional[int]) -> Optional[int]:
    value = (os.getenv(name) or "").upper()
    if not value:
        return default
    level = logging.getLevelName(value)
    return level if isinstance(level, int) else default


class JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON for log aggregators."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in LEDGER_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info and record.exc_info[0]:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_serial)


def configure_logging() -> None:
    """Configure root logger and the ledger's noisy loggers from env."""
    level = _env_level("LOG_LEVEL", logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    # Avoid duplicate handlers when reloading
    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter() if _env_flag("LOG_JSON") else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)

    # NOTSET hands the simulator back to LOG_LEVEL
    logging.getLogger(PRICE_LOGGER).setLevel(_env_level("PRICE_LOG_LEVEL", logging.NOTSET))

    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if _env_flag("LOG_SQL") else logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
