"""Unix-second timestamp helpers (UTC with timezone)."""

from datetime import datetime, timezone


def utc_now_seconds() -> int:
    """Current time as whole unix seconds."""
    return int(datetime.now(timezone.utc).timestamp())


def to_datetime(ts: int) -> datetime:
    """Unix seconds to a timezone-aware UTC datetime."""
    return datetime.fromtimestamp(ts, tz=timezone.utc)

