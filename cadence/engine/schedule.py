"""
cadence.engine.schedule — Schedule Matcher
===========================================

Pure decisions for recurring per-community jobs.  No DB I/O.

A schedule fires when, in **its own timezone**:

(a) the wall clock is within ``tolerance`` of the configured ``HH:MM``,
    on the local date or the day either side of it,
(b) that occurrence's day qualifies for the period (any day for daily,
    Monday for weekly, the 1st for monthly), and
(c) the most recent auto-generated block does not already carry the
    occurrence's bucket key.

Bucket keys identify one period instance: ``2024-01-15`` (daily),
``2024-W03`` (ISO week), ``2024-01`` (month).  The storage layer keeps
them unique per community, which is what makes execution at-most-once
across overlapping ticks and multiple workers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from cadence.constants import FALLBACK_TITLE_FORMAT
from cadence.database.models import SchedulePeriod
from cadence.engine.clock import resolve_timezone, to_local
from cadence.errors import ValidationError

DEFAULT_TOLERANCE = timedelta(minutes=1)

_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_period(value: str) -> SchedulePeriod:
    try:
        return SchedulePeriod(str(value).lower())
    except ValueError as exc:
        raise ValidationError(
            f"Unknown schedule period: {value!r}", details={"period": value}
        ) from exc


def parse_local_time(value: str | time) -> time:
    """Parse ``"HH:MM"`` (or pass through a :class:`time`)."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0, tzinfo=None)
    match = _HHMM.match(str(value).strip())
    if match is None:
        raise ValidationError(
            f"Schedule time must be HH:MM, got {value!r}", details={"time": value}
        )
    return time(int(match.group(1)), int(match.group(2)))


@dataclass(frozen=True, slots=True)
class Recurrence:
    """The firing rule of one schedule."""

    local_time: time
    timezone: str
    period: SchedulePeriod

    @classmethod
    def build(cls, local_time: str | time, timezone: str, period: str) -> Recurrence:
        """Validate raw fields and return a :class:`Recurrence`."""
        resolve_timezone(timezone)
        return cls(parse_local_time(local_time), timezone, parse_period(period))


def period_bucket_key(recurrence: Recurrence, instant: datetime) -> str:
    """Canonical id of the period containing *instant*, in local time."""
    local = to_local(instant, recurrence.timezone)
    if recurrence.period is SchedulePeriod.WEEKLY:
        return local.strftime("%G-W%V")
    if recurrence.period is SchedulePeriod.MONTHLY:
        return local.strftime("%Y-%m")
    return local.strftime("%Y-%m-%d")


def is_period_start(period: SchedulePeriod, local_day: date) -> bool:
    if period is SchedulePeriod.WEEKLY:
        return local_day.weekday() == 0
    if period is SchedulePeriod.MONTHLY:
        return local_day.day == 1
    return True


def scheduled_occurrence(
    recurrence: Recurrence,
    now_utc: datetime,
    tolerance: timedelta = DEFAULT_TOLERANCE,
) -> datetime | None:
    """The occurrence *now_utc* is within ``tolerance`` of, or ``None``.

    Candidates are the configured ``HH:MM`` on the local date and on the
    days either side, so a midnight schedule keeps both halves of its
    window.  The result is aware local time; its date names the bucket.

    Compared on the naive local wall clock, so a time skipped by a DST
    transition does not fire that day.
    """
    local = to_local(now_utc, recurrence.timezone).replace(tzinfo=None)
    for offset in (0, -1, 1):
        day = local.date() + timedelta(days=offset)
        scheduled = datetime.combine(day, recurrence.local_time)
        if abs(local - scheduled) <= tolerance and is_period_start(recurrence.period, day):
            return scheduled.replace(tzinfo=resolve_timezone(recurrence.timezone))
    return None


def is_firing_moment(
    recurrence: Recurrence,
    now_utc: datetime,
    tolerance: timedelta = DEFAULT_TOLERANCE,
) -> bool:
    """Conditions (a) and (b): right wall-clock minute on a qualifying day."""
    return scheduled_occurrence(recurrence, now_utc, tolerance) is not None


def should_fire(
    recurrence: Recurrence,
    now_utc: datetime,
    latest_bucket_key: str | None = None,
    tolerance: timedelta = DEFAULT_TOLERANCE,
) -> bool:
    """Full decision: (a), (b) and the bucket guard (c).

    *latest_bucket_key* is the bucket of the community's most recent
    auto-generated block, or ``None`` if it has none.
    """
    occurrence = scheduled_occurrence(recurrence, now_utc, tolerance)
    if occurrence is None:
        return False
    return latest_bucket_key != period_bucket_key(recurrence, occurrence)


def fallback_title(recurrence: Recurrence, instant: datetime) -> str:
    """Deterministic ``DD-MM-YYYY`` block title in the schedule's zone."""
    return to_local(instant, recurrence.timezone).strftime(FALLBACK_TITLE_FORMAT)
