"""
Cron expressions for tick scheduling.

Standard 5 fields: minute hour day-of-month month day-of-week. Each field
accepts ``*``, ``*/n``, ``a``, ``a,b``, ``a-b`` and ``a-b/n``; day-of-week
takes 0-7 with both 0 and 7 meaning Sunday. When day-of-month and day-of-week
are both restricted a day matches if either does, as in classic cron.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# (name, min, max) per field, in expression order
_FIELDS: tuple[tuple[str, int, int], ...] = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day", 1, 31),
    ("month", 1, 12),
    ("weekday", 0, 7),
)

# Search horizon; covers a leap day four years out
_HORIZON = timedelta(days=366 * 4 + 1)


class CronParseError(ValueError):
    pass


@dataclass(frozen=True)
class CronSchedule:
    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]  # 0=Sunday
    days_restricted: bool
    weekdays_restricted: bool

    def day_matches(self, dt: datetime) -> bool:
        if dt.month not in self.months:
            return False
        dom = dt.day in self.days
        dow = (dt.weekday() + 1) % 7 in self.weekdays
        if self.days_restricted and self.weekdays_restricted:
            return dom or dow
        if self.days_restricted:
            return dom
        if self.weekdays_restricted:
            return dow
        return True


def parse_cron(expr: str) -> CronSchedule:
    """
    Parse a 5-field cron expression.

    Raises:
        CronParseError: If the expression is malformed
    """
    parts = expr.split()
    if len(parts) != 5:
        raise CronParseError(f"cron must have 5 fields, got {len(parts)}: {expr!r}")

    values = [_parse_field(token, name, lo, hi) for token, (name, lo, hi) in zip(parts, _FIELDS)]
    weekdays = frozenset(0 if v == 7 else v for v in values[4])
    return CronSchedule(
        minutes=values[0],
        hours=values[1],
        days=values[2],
        months=values[3],
        weekdays=weekdays,
        days_restricted=parts[2] != "*",
        weekdays_restricted=parts[4] != "*",
    )


def next_fire_time(expr: str, *, now: datetime, timezone: str | None = None) -> datetime:
    """
    First time strictly after ``now`` (at minute resolution) matching ``expr``.

    Args:
        expr: Cron expression (e.g. "*/5 * * * *")
        now: Reference time; naive values are taken to be in ``timezone``
        timezone: IANA zone name the expression is evaluated in (default: now's zone, else UTC)

    Raises:
        CronParseError: If the expression is invalid or never fires
    """
    try:
        tz = ZoneInfo(timezone) if timezone else (now.tzinfo or ZoneInfo("UTC"))
    except ZoneInfoNotFoundError as e:
        raise CronParseError(f"unknown timezone: {timezone!r}") from e

    now = now.replace(tzinfo=tz) if now.tzinfo is None else now.astimezone(tz)
    schedule = parse_cron(expr)

    cursor = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
    limit = cursor + _HORIZON
    while cursor <= limit:
        if not schedule.day_matches(cursor):
            cursor = (cursor + timedelta(days=1)).replace(hour=0, minute=0)
            continue
        if cursor.hour not in schedule.hours:
            cursor = (cursor + timedelta(hours=1)).replace(minute=0)
            continue
        if cursor.minute not in schedule.minutes:
            cursor += timedelta(minutes=1)
            continue
        return cursor

    raise CronParseError(f"cron expression never fires: {expr!r}")


def _parse_field(token: str, name: str, lo: int, hi: int) -> frozenset[int]:
    values: set[int] = set()
    for part in token.split(","):
        if not part:
            raise CronParseError(f"empty item in {name} field: {token!r}")

        step = 1
        if "/" in part:
            part, step_s = part.split("/", 1)
            if not step_s.isdigit() or int(step_s) == 0:
                raise CronParseError(f"invalid step in {name} field: {token!r}")
            step = int(step_s)

        if part == "*":
            start, end = lo, hi
        elif "-" in part:
            a, b = part.split("-", 1)
            if not (a.isdigit() and b.isdigit()):
                raise CronParseError(f"invalid range in {name} field: {token!r}")
            start, end = int(a), int(b)
            if start > end:
                raise CronParseError(f"range start > end in {name} field: {token!r}")
        elif part.isdigit():
            start = end = int(part)
        else:
            raise CronParseError(f"invalid value in {name} field: {token!r}")

        if start < lo or end > hi:
            raise CronParseError(f"{name} out of bounds ({lo}-{hi}): {token!r}")
        values.update(range(start, end + 1, step))

    return frozenset(values)
