from __future__ import annotations

from datetime import date, datetime, timedelta, timezone


def to_iso(dt: datetime) -> str:
    """UTC ISO-8601 string with Z (seconds precision)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def utcnow_iso() -> str:
    """Current UTC time as ISO-8601 string with Z."""
    return to_iso(datetime.now(timezone.utc))


def parse_date(s: str) -> date:
    """Parse the leading YYYY-MM-DD of a date or timestamp string."""
    y, m, d = str(s)[:10].split("-")
    return date(int(y), int(m), int(d))


def shift_date(s: str, days: int) -> str:
    return (parse_date(s) + timedelta(days=days)).isoformat()


class SystemClock:
    """Wall clock. Processors only ever ask a clock for "now"."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now().date()

    def now_iso(self) -> str:
        return to_iso(self.now())

    def days_ago(self, days: int) -> str:
        """Calendar date `days` before today, as YYYY-MM-DD."""
        return (self.today() - timedelta(days=days)).isoformat()

    def timestamp_days_ago(self, days: int) -> str:
        return to_iso(self.now() - timedelta(days=days))


class FixedClock(SystemClock):
    """A clock pinned to one instant (tests, replays)."""

    def __init__(self, at: datetime):
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        self._at = at

    def now(self) -> datetime:
        return self._at

    def advance(self, **kwargs: float) -> None:
        self._at = self._at + timedelta(**kwargs)
