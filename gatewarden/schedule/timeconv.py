"""Wall-clock time in a named zone -> exact UTC instant."""

import re
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from gatewarden.errors import ScheduleValidationError

_LOCAL_TIME_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})\s+(\d{1,2}):(\d{2})$")

_FIELDS = ("year", "month", "day", "hour", "minute")


def get_zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ScheduleValidationError(f'Unknown time zone: "{tz_name}".') from e


def _civil(instant: datetime, zone: ZoneInfo) -> tuple[int, ...]:
    local = instant.astimezone(zone)
    return tuple(getattr(local, f) for f in _FIELDS)


def _offset_at(instant: datetime, zone: ZoneInfo) -> timedelta:
    """Zone offset at ``instant``, derived by rendering its civil time."""
    local = instant.astimezone(zone).replace(tzinfo=None)
    return local - instant.replace(tzinfo=None)


def local_to_utc(time_str: str, tz_name: str) -> datetime:
    """
    Convert ``"YYYY-MM-DD HH:MM"`` in ``tz_name`` to an aware UTC datetime.

    The zone offset is read off a trial instant and applied; the candidate is
    rendered back in the zone and must reproduce the requested fields. One
    refinement with the offset seen at the candidate covers inputs within a
    few hours after a transition. A wall-clock time that still does not
    round-trip lies inside a DST gap and is rejected, never snapped.

    Raises:
        ScheduleValidationError: bad format, impossible date, unknown zone,
            or a nonexistent local time.
    """
    match = _LOCAL_TIME_RE.match(time_str.strip())
    if not match:
        raise ScheduleValidationError(
            f'Invalid time format: "{time_str}". Expected "YYYY-MM-DD HH:MM".'
        )

    requested = tuple(int(g) for g in match.groups())
    zone = get_zone(tz_name)

    try:
        trial = datetime(*requested, tzinfo=timezone.utc)
    except ValueError as e:
        raise ScheduleValidationError(f'Invalid date/time: "{time_str}".') from e

    candidate = trial - _offset_at(trial, zone)
    if _civil(candidate, zone) != requested:
        candidate = trial - _offset_at(candidate, zone)
        if _civil(candidate, zone) != requested:
            raise ScheduleValidationError(
                f'Time "{time_str}" does not exist in {tz_name} (daylight saving gap).'
            )
    return candidate
