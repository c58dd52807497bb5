from datetime import datetime, timezone
from typing import Optional


def safe_div(n, d):
    try:
        return (n / d) if (n is not None and d not in (None, 0)) else None
    except ZeroDivisionError:
        return None


def pct_change(cur: Optional[float], base: Optional[float]) -> Optional[float]:
    if cur is None or base in (None, 0):
        return None
    return (cur / base - 1.0) * 100.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    SQLite hands back naive datetimes even for timezone-aware columns.
    Everything leaving the storage layer is normalized to aware UTC so
    values read back compare cleanly with freshly created ones.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_symbol(value: str) -> str:
    return (value or "").strip().upper()
