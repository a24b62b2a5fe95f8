"""Clock helpers.

All persisted timestamps are naive UTC.
"""

from datetime import datetime, timezone, tzinfo


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_hhmm(now: datetime, tz: tzinfo) -> str:
    """Render a naive-UTC instant as zero-padded local "HH:MM" in `tz`."""
    aware = now.replace(tzinfo=timezone.utc) if now.tzinfo is None else now
    return aware.astimezone(tz).strftime("%H:%M")
