import time
from datetime import datetime, timezone

HOUR_MS = 3600 * 1000

def now_ms() -> int:
    return int(time.time() * 1000)

def to_iso(ms) -> str:
    """Render epoch milliseconds as an ISO-8601 UTC string ('' for None)."""
    if ms is None:
        return ""
    dt = datetime.fromtimestamp(int(ms) / 1000.0, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")

def to_datetime(ms) -> datetime:
    return datetime.fromtimestamp(int(ms) / 1000.0, tz=timezone.utc)

def hours_until(deadline_ms, now: int) -> int:
    """Whole hours left until deadline_ms, clamped to >= 0."""
    if not deadline_ms:
        return 0
    return max(0, int((int(deadline_ms) - int(now)) // HOUR_MS))
