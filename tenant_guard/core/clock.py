"""Time source used by every service.

Services take a ``clock`` keyword so expiry, lockout windows and retention
can be exercised deterministically.
"""

from datetime import datetime, timezone


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


system_clock = SystemClock()


def ensure_aware(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
