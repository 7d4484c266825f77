"""
cadence.engine.clock — Timezone Provider
=========================================

Converts instants to civil dates and times in arbitrary IANA zones.
Every "day" in the streak machine and every firing moment in the
schedule matcher is computed through here, never from naive local time.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cadence.errors import ValidationError


@lru_cache(maxsize=256)
def resolve_timezone(name: str) -> ZoneInfo:
    """Return the :class:`ZoneInfo` for *name* or raise ``ValidationError``."""
    if not name or not isinstance(name, str):
        raise ValidationError("Timezone must be a non-empty IANA name")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(
            f"Unknown timezone: {name!r}", details={"timezone": name}
        ) from exc


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_local(instant: datetime, tz_name: str) -> datetime:
    """Convert an aware *instant* to wall-clock time in *tz_name*.

    Naive instants are taken to be UTC.
    """
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return instant.astimezone(resolve_timezone(tz_name))


def local_today(tz_name: str, now: datetime | None = None) -> date:
    """The civil date in *tz_name* at *now* (defaults to the current instant)."""
    return to_local(now or utc_now(), tz_name).date()
