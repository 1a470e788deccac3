from __future__ import annotations

from datetime import datetime, timezone

# --- UTC clock helpers ---

def utc_now() -> datetime:
    """Timezone-aware current UTC instant."""
    return datetime.now(tz=timezone.utc)

def epoch_s(dt: datetime) -> float:
    """Convert aware datetime -> epoch seconds."""
    if dt.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return dt.timestamp()

def utc_dt(ts: float | int) -> datetime:
    """Epoch seconds -> timezone-aware UTC datetime."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)

def to_iso(dt: datetime) -> str:
    """Aware datetime -> ISO-8601 string in UTC."""
    if dt.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return dt.astimezone(timezone.utc).isoformat()

def from_iso(s: str) -> datetime:
    """ISO-8601 string -> aware UTC datetime (naive input is taken as UTC)."""
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def seconds_until(target: datetime, now: datetime | None = None) -> float:
    """Non-negative time until target (clamped at 0)."""
    now = now or utc_now()
    return max(0.0, (target - now).total_seconds())
