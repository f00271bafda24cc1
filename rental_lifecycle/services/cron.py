"""
Five-field cron expressions (minute hour day-of-month month day-of-week).

Supports ``*``, exact numbers, comma-separated lists, ranges (``1-5``),
step values (``*/5``, ``1-10/2``) and three-letter month/day names
(``JAN``, ``MON``). Day-of-week 0 and 7 are both Sunday. When both
day-of-month and day-of-week are restricted, a day matches if either does
(classic cron behaviour).
"""

from __future__ import annotations

from datetime import datetime, timedelta

from ..exceptions import ConfigurationError

_MONTH_NAMES = {name: i for i, name in enumerate(
    ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"], start=1)}
_DOW_NAMES = {name: i for i, name in enumerate(["sun", "mon", "tue", "wed", "thu", "fri", "sat"])}

# (min, max, names) per field
_FIELDS = (
    ("minute", 0, 59, {}),
    ("hour", 0, 23, {}),
    ("day of month", 1, 31, {}),
    ("month", 1, 12, _MONTH_NAMES),
    ("day of week", 0, 7, _DOW_NAMES),
)

# Give up looking for the next fire time after this long
_SEARCH_LIMIT = timedelta(days=366 * 5)


def _value(token: str, names: dict, label: str) -> int:
    token = token.strip().lower()
    if token in names:
        return names[token]
    if not token.isdigit():
        raise ConfigurationError(f"Invalid {label} value in cron expression: {token!r}")
    return int(token)


def _expand_field(field: str, min_val: int, max_val: int, names: dict, label: str) -> set[int]:
    """Expand one cron field into the set of values it matches."""
    values: set[int] = set()
    for part in field.split(","):
        if not part:
            raise ConfigurationError(f"Empty {label} entry in cron expression")
        step = 1
        if "/" in part:
            part, step_str = part.split("/", 1)
            if not step_str.isdigit() or int(step_str) == 0:
                raise ConfigurationError(f"Invalid {label} step in cron expression: {step_str!r}")
            step = int(step_str)

        if part == "*":
            lo, hi = min_val, max_val
        elif "-" in part:
            lo_s, hi_s = part.split("-", 1)
            lo, hi = _value(lo_s, names, label), _value(hi_s, names, label)
        else:
            lo = _value(part, names, label)
            # "5/10" means "from 5 to the end, every 10"
            hi = max_val if step > 1 else lo

        if lo < min_val or hi > max_val or lo > hi:
            raise ConfigurationError(f"{label.capitalize()} out of range in cron expression: {field!r}")
        values.update(range(lo, hi + 1, step))
    return values


class CronSchedule:
    """A parsed cron expression that can test and find matching wall-clock minutes."""

    def __init__(self, expression: str):
        parts = (expression or "").split()
        if len(parts) != 5:
            raise ConfigurationError(f"Invalid cron expression (need 5 fields): {expression!r}")
        self.expression = " ".join(parts)

        expanded = [
            _expand_field(part, lo, hi, names, label)
            for part, (label, lo, hi, names) in zip(parts, _FIELDS)
        ]
        self.minutes, self.hours, self.days, self.months, dows = expanded
        # 7 is an alias for Sunday
        self.weekdays = {d % 7 for d in dows}
        self._dom_restricted = not parts[2].startswith("*")
        self._dow_restricted = not parts[4].startswith("*")

    def __repr__(self) -> str:
        return f"CronSchedule({self.expression!r})"

    def _day_matches(self, dt: datetime) -> bool:
        dom_ok = dt.day in self.days
        dow_ok = (dt.isoweekday() % 7) in self.weekdays
        if self._dom_restricted and self._dow_restricted:
            return dom_ok or dow_ok
        return dom_ok and dow_ok

    def matches(self, dt: datetime) -> bool:
        """True if the minute containing `dt` is a fire time."""
        return (
                dt.minute in self.minutes
                and dt.hour in self.hours
                and dt.month in self.months
                and self._day_matches(dt)
        )

    def next_after(self, dt: datetime) -> datetime:
        """
        First fire time strictly after `dt`, as a wall-clock datetime with the
        same tzinfo handling as the input (callers pass naive local times).
        Skips whole months/days/hours that cannot match instead of walking
        minute by minute.
        """
        check = dt.replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = dt + _SEARCH_LIMIT
        while check <= limit:
            if check.month not in self.months:
                year = check.year + (1 if check.month == 12 else 0)
                month = 1 if check.month == 12 else check.month + 1
                check = check.replace(year=year, month=month, day=1, hour=0, minute=0)
                continue
            if not self._day_matches(check):
                check = check.replace(hour=0, minute=0) + timedelta(days=1)
                continue
            if check.hour not in self.hours:
                check = check.replace(minute=0) + timedelta(hours=1)
                continue
            if check.minute not in self.minutes:
                check += timedelta(minutes=1)
                continue
            return check
        raise ConfigurationError(f"Cron expression never fires: {self.expression!r}")
