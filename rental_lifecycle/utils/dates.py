"""Date/datetime parsing and timezone helpers."""
from datetime import datetime, date, timedelta, timezone

import pytz

ONE_DAY = timedelta(days=1)


def as_datetime(value) -> datetime:
    """
    Coerce a stored date value into an aware datetime.
    Supports:
      - datetime objects (naive ones are assumed UTC)
      - date objects (midnight UTC)
      - 'YYYY-MM-DD'
      - 'YYYY-MM-DD HH:MM[:SS]' / 'YYYY-MM-DDTHH:MM[:SS]'
      - Above with 'Z' or timezone offsets like '+05:30'
    Raises ValueError for anything else.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        s = value.strip()
        if not s:
            raise ValueError("Empty date value")
        # Normalize trailing 'Z' so fromisoformat accepts it on every Python 3
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)
    else:
        raise ValueError(f"Unsupported date: {value!r}")

    # If naive datetime, assume UTC
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def get_timezone(name: str):
    """Return a pytz timezone; raises pytz.UnknownTimeZoneError for bad names."""
    return pytz.timezone(name)


def local_now(tz) -> datetime:
    """Current time as an aware datetime in `tz` (a pytz timezone)."""
    return datetime.now(pytz.utc).astimezone(tz)


def localize(naive: datetime, tz) -> datetime:
    """Attach a pytz timezone to a naive wall-clock time (DST-aware)."""
    return tz.normalize(tz.localize(naive))


def to_iso(dt: datetime) -> str:
    return dt.isoformat(timespec="seconds")
