"""Recurrence engine: next delivery instant for a schedule.

``compute_next`` is pure and deterministic. Wall-clock schedules are
evaluated in the job's IANA timezone and every candidate is re-derived from
the zone, so "09:00 daily" stays 09:00 local across DST changes. Results
are aware UTC datetimes strictly after the reference instant, or ``None``
when there is no further occurrence. Bad parameters never raise.
"""

import calendar
import logging
import re
from datetime import UTC, date, datetime, time, timedelta
from typing import assert_never
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from chime.scheduling.types import (
    Daily,
    EveryXMinutes,
    Hourly,
    Interval,
    Monthly,
    Off,
    Once,
    Schedule,
    Times,
    Weekly,
    WeeklyAnchor,
    Yearly,
)

logger = logging.getLogger(__name__)

# Days searched ahead for weekday-restricted schedules
SEARCH_HORIZON_DAYS = 14
# Last year whose slots stay representable across timezone conversions
MAX_YEAR = 9998

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_DAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")


def parse_time_of_day(value: str | None) -> tuple[int, int] | None:
    """Parse ``HH:MM`` (24h) into (hour, minute), or None if invalid."""
    if not value:
        return None
    match = _TIME_RE.match(value.strip())
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour, minute


def resolve_zone(timezone: str | None) -> ZoneInfo:
    """Get a ZoneInfo, falling back to UTC for unknown names."""
    try:
        return ZoneInfo(timezone or "UTC")
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        logger.warning("invalid_timezone", extra={"schedule.timezone": timezone})
        return ZoneInfo("UTC")


def weekday_index(day: date) -> int:
    """Weekday with 0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=UTC)
    return instant.astimezone(UTC)


def _localize(day: date, at: time, zone: ZoneInfo) -> datetime:
    """Wall-clock ``day at`` in ``zone`` as a UTC instant.

    Times inside a spring-forward gap land after the gap; ambiguous
    fall-back times resolve to their first occurrence.
    """
    return datetime.combine(day, at, tzinfo=zone).astimezone(UTC)


def _at(day: date, hm: tuple[int, int], zone: ZoneInfo) -> datetime:
    return _localize(day, time(hm[0], hm[1]), zone)


def _add_months(year: int, month: int, months: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def _clamped_day(year: int, month: int, day: int) -> int:
    return min(day, calendar.monthrange(year, month)[1])


def compute_next(
    schedule: Schedule, timezone: str | None, reference: datetime
) -> datetime | None:
    """Compute the next occurrence strictly after ``reference``.

    Args:
        schedule: The job's schedule variant.
        timezone: IANA zone for wall-clock schedules; unknown names use UTC.
        reference: The instant to compute from (naive values are UTC).

    Returns:
        Aware UTC datetime, or None if the schedule has no further occurrence.
    """
    ref = _as_utc(reference)
    try:
        result = _compute(schedule, resolve_zone(timezone), ref)
    except (OverflowError, ValueError) as e:
        # Parameters that push past the supported date range retire the job
        logger.warning(
            "recurrence_out_of_range",
            extra={"schedule": repr(schedule), "error.message": str(e)},
        )
        return None
    if result is None:
        return None
    if result <= ref:
        # Never hand back an instant that would make the job due again
        logger.warning(
            "recurrence_no_forward_progress",
            extra={"schedule": repr(schedule), "schedule.reference": ref.isoformat()},
        )
        return None
    return result


def _compute(schedule: Schedule, zone: ZoneInfo, ref: datetime) -> datetime | None:
    if isinstance(schedule, Once | Off):
        return None
    if isinstance(schedule, Interval):
        if schedule.minutes is None or schedule.minutes <= 0:
            return None
        return ref + timedelta(minutes=schedule.minutes)
    if isinstance(schedule, Daily):
        return _next_daily(schedule, zone, ref)
    if isinstance(schedule, Weekly):
        return _next_weekly(schedule, zone, ref)
    if isinstance(schedule, Monthly):
        return _next_monthly(schedule, zone, ref)
    if isinstance(schedule, Yearly):
        return _next_yearly(schedule, zone, ref)
    if isinstance(schedule, Times):
        return _next_times(schedule, zone, ref)
    if isinstance(schedule, Hourly):
        if schedule.every_hours is None or schedule.every_hours <= 0:
            return None
        return _next_windowed(
            timedelta(hours=schedule.every_hours),
            schedule.window_start,
            schedule.window_end,
            schedule.days_of_week,
            zone,
            ref,
        )
    if isinstance(schedule, EveryXMinutes):
        if schedule.every_minutes is None or schedule.every_minutes <= 0:
            return None
        return _next_windowed(
            timedelta(minutes=schedule.every_minutes),
            schedule.window_start,
            schedule.window_end,
            schedule.days_of_week,
            zone,
            ref,
        )
    if isinstance(schedule, WeeklyAnchor):
        return _next_weekly_anchor(schedule, zone, ref)
    assert_never(schedule)


def _next_daily(schedule: Daily, zone: ZoneInfo, ref: datetime) -> datetime | None:
    hm = parse_time_of_day(schedule.time_of_day)
    if hm is None:
        return None
    step = timedelta(days=max(1, schedule.interval))
    day = ref.astimezone(zone).date()
    # Today's slot, or the first slot one step later; a third try covers
    # a slot pushed past midnight by a DST gap
    for _ in range(3):
        candidate = _at(day, hm, zone)
        if candidate > ref:
            return candidate
        day += step
    return None


def _next_weekly(schedule: Weekly, zone: ZoneInfo, ref: datetime) -> datetime | None:
    hm = parse_time_of_day(schedule.time_of_day)
    if hm is None:
        return None
    today = ref.astimezone(zone).date()
    days = set(schedule.days_of_week) or {weekday_index(today)}
    for offset in range(SEARCH_HORIZON_DAYS + 1):
        day = today + timedelta(days=offset)
        if weekday_index(day) not in days:
            continue
        candidate = _at(day, hm, zone)
        if candidate > ref:
            return candidate
    return ref + timedelta(days=7)


def _next_monthly(schedule: Monthly, zone: ZoneInfo, ref: datetime) -> datetime | None:
    hm = parse_time_of_day(schedule.time_of_day)
    dom = schedule.day_of_month
    if hm is None or dom is None or not 1 <= dom <= 31:
        return None
    step = max(1, schedule.interval)
    local = ref.astimezone(zone)
    for k in range(25):
        year, month = _add_months(local.year, local.month, k * step)
        if year > MAX_YEAR:
            return None
        candidate = _at(date(year, month, _clamped_day(year, month, dom)), hm, zone)
        if candidate > ref:
            return candidate
    return None


def _next_yearly(schedule: Yearly, zone: ZoneInfo, ref: datetime) -> datetime | None:
    hm = parse_time_of_day(schedule.time_of_day)
    month, day = schedule.month, schedule.day
    if hm is None or month is None or day is None:
        return None
    if not 1 <= month <= 12 or not 1 <= day <= 31:
        return None
    step = max(1, schedule.interval)
    start_year = ref.astimezone(zone).year
    for k in range(10):
        year = start_year + k * step
        if year > MAX_YEAR:
            return None
        candidate = _at(date(year, month, _clamped_day(year, month, day)), hm, zone)
        if candidate > ref:
            return candidate
    return None


def _next_times(schedule: Times, zone: ZoneInfo, ref: datetime) -> datetime | None:
    parsed = {parse_time_of_day(t) for t in schedule.times_of_day}
    slots = sorted(hm for hm in parsed if hm is not None)
    if not slots:
        return None
    allowed = set(schedule.days_of_week)
    today = ref.astimezone(zone).date()
    for offset in range(SEARCH_HORIZON_DAYS + 1):
        day = today + timedelta(days=offset)
        if allowed and weekday_index(day) not in allowed:
            continue
        for hm in slots:
            candidate = _at(day, hm, zone)
            if candidate > ref:
                return candidate
    return None


def _next_windowed(
    cadence: timedelta,
    window_start: str | None,
    window_end: str | None,
    days_of_week: tuple[int, ...],
    zone: ZoneInfo,
    ref: datetime,
) -> datetime | None:
    start_hm = parse_time_of_day(window_start)
    end_hm = parse_time_of_day(window_end)
    # Overnight windows are not supported; treat them as no window
    has_window = start_hm is not None and end_hm is not None and end_hm > start_hm
    allowed = set(days_of_week)

    def is_allowed(day: date) -> bool:
        return not allowed or weekday_index(day) in allowed

    def next_day_start(after: date) -> datetime | None:
        opening = start_hm if has_window and start_hm else (0, 0)
        for offset in range(1, SEARCH_HORIZON_DAYS + 1):
            day = after + timedelta(days=offset)
            if is_allowed(day):
                return _at(day, opening, zone)
        return None

    today = ref.astimezone(zone).date()

    if not has_window:
        candidate = ref + cadence
        candidate_day = candidate.astimezone(zone).date()
        if is_allowed(candidate_day):
            return candidate
        return next_day_start(candidate_day)

    assert start_hm is not None and end_hm is not None
    if not is_allowed(today):
        return next_day_start(today)

    opens = _at(today, start_hm, zone)
    closes = _at(today, end_hm, zone)
    if ref < opens:
        return opens
    if ref >= closes:
        return next_day_start(today)

    candidate = ref + cadence
    if candidate < closes:
        return candidate
    return next_day_start(today)


def _next_weekly_anchor(
    schedule: WeeklyAnchor, zone: ZoneInfo, ref: datetime
) -> datetime | None:
    if schedule.anchor is None:
        return None
    anchor = _as_utc(schedule.anchor)
    if anchor > ref:
        return anchor

    anchor_local = anchor.astimezone(zone)
    elapsed_days = (ref.astimezone(zone).date() - anchor_local.date()).days
    first_week = max(0, elapsed_days // 7)
    wall_time = anchor_local.time().replace(tzinfo=None, fold=0)
    for k in range(first_week, first_week + 3):
        day = anchor_local.date() + timedelta(days=7 * k)
        candidate = _localize(day, wall_time, zone)
        if candidate > ref:
            return candidate
    return None


# ---------------------------------------------------------------------------
# Presentation helpers
# ---------------------------------------------------------------------------


def format_local(instant: datetime, timezone: str | None) -> str:
    """Format an instant for users, e.g. ``Tue, Mar 10 at 9:05 AM``."""
    local = _as_utc(instant).astimezone(resolve_zone(timezone))
    hour = local.hour % 12 or 12
    return f"{local:%a, %b} {local.day} at {hour}:{local:%M %p}"


def _days_label(days: tuple[int, ...]) -> str:
    return ", ".join(_DAY_NAMES[d] for d in days)


def _every(n: float, unit: str) -> str:
    count = int(n) if float(n).is_integer() else n
    return f"every {unit}" if count == 1 else f"every {count} {unit}s"


def describe_schedule(schedule: Schedule) -> str:
    """Short human description of a schedule."""
    if isinstance(schedule, Once):
        return "once"
    if isinstance(schedule, Off):
        return "off"
    if isinstance(schedule, Interval):
        return _every(schedule.minutes or 0, "minute")
    if isinstance(schedule, Daily):
        return f"{_every(schedule.interval, 'day')} at {schedule.time_of_day}"
    if isinstance(schedule, Weekly):
        days = _days_label(schedule.days_of_week) or "the same weekday"
        return f"weekly on {days} at {schedule.time_of_day}"
    if isinstance(schedule, Monthly):
        return (
            f"{_every(schedule.interval, 'month')} on day "
            f"{schedule.day_of_month} at {schedule.time_of_day}"
        )
    if isinstance(schedule, Yearly):
        month = calendar.month_abbr[schedule.month] if schedule.month in range(1, 13) else "?"
        return (
            f"{_every(schedule.interval, 'year')} on {month} {schedule.day} "
            f"at {schedule.time_of_day}"
        )
    if isinstance(schedule, Times):
        text = f"at {', '.join(sorted(schedule.times_of_day))}"
        if schedule.days_of_week:
            text += f" on {_days_label(schedule.days_of_week)}"
        return text
    if isinstance(schedule, Hourly | EveryXMinutes):
        if isinstance(schedule, Hourly):
            text = _every(schedule.every_hours or 0, "hour")
        else:
            text = _every(schedule.every_minutes or 0, "minute")
        if schedule.window_start and schedule.window_end:
            text += f" between {schedule.window_start} and {schedule.window_end}"
        if schedule.days_of_week:
            text += f" on {_days_label(schedule.days_of_week)}"
        return text
    if isinstance(schedule, WeeklyAnchor):
        anchor = schedule.anchor.isoformat() if schedule.anchor else "?"
        return f"weekly from {anchor}"
    assert_never(schedule)
