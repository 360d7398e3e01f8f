"""Schedule and job types.

Public types:
- Schedule: union of the recurrence variants (Once, Interval, Daily, ...)
- Job: a stored reminder or habit, independent of the database row
- JobFamily: reminder/habit, each with its own status policy
- ReminderPayload / HabitPayload: what gets delivered
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

ERROR_STATUS = "error"
DELETED_STATUS = "deleted"


# ---------------------------------------------------------------------------
# Schedule variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Once:
    """Deliver a single time, then retire."""


@dataclass(frozen=True)
class Off:
    """Habit reminders switched off."""


@dataclass(frozen=True)
class Interval:
    """Fixed duration offset, independent of the timezone."""

    minutes: float | None = None


@dataclass(frozen=True)
class Daily:
    time_of_day: str | None = None
    interval: int = 1  # every N days


@dataclass(frozen=True)
class Weekly:
    time_of_day: str | None = None
    # 0=Sun .. 6=Sat; empty means the reference's own weekday
    days_of_week: tuple[int, ...] = ()


@dataclass(frozen=True)
class Monthly:
    time_of_day: str | None = None
    day_of_month: int | None = None  # clamped to the month length
    interval: int = 1


@dataclass(frozen=True)
class Yearly:
    time_of_day: str | None = None
    month: int | None = None
    day: int | None = None  # clamped, so Feb 29 becomes Feb 28 off leap years
    interval: int = 1


@dataclass(frozen=True)
class Times:
    """Habit reminders at fixed local times of day."""

    times_of_day: tuple[str, ...] = ()
    days_of_week: tuple[int, ...] = ()


@dataclass(frozen=True)
class Hourly:
    """Habit reminders every N hours inside an optional daily window."""

    every_hours: float | None = None
    window_start: str | None = None
    window_end: str | None = None
    days_of_week: tuple[int, ...] = ()


@dataclass(frozen=True)
class EveryXMinutes:
    """Habit reminders every N minutes inside an optional daily window."""

    every_minutes: float | None = None
    window_start: str | None = None
    window_end: str | None = None
    days_of_week: tuple[int, ...] = ()


@dataclass(frozen=True)
class WeeklyAnchor:
    """Weekly habit cadence: the anchor instant plus whole weeks."""

    anchor: datetime | None = None


Schedule = (
    Once
    | Off
    | Interval
    | Daily
    | Weekly
    | Monthly
    | Yearly
    | Times
    | Hourly
    | EveryXMinutes
    | WeeklyAnchor
)

SCHEDULE_KINDS: dict[str, type] = {
    "once": Once,
    "off": Off,
    "interval": Interval,
    "daily": Daily,
    "weekly": Weekly,
    "monthly": Monthly,
    "yearly": Yearly,
    "times": Times,
    "hourly": Hourly,
    "every_x_minutes": EveryXMinutes,
    "weekly_anchor": WeeklyAnchor,
}
_KIND_BY_TYPE = {cls: kind for kind, cls in SCHEDULE_KINDS.items()}


def schedule_kind(schedule: Schedule) -> str:
    return _KIND_BY_TYPE[type(schedule)]


def is_recurring(schedule: Schedule) -> bool:
    return not isinstance(schedule, Once | Off)


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return int(number)


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def _as_days(value: Any) -> tuple[int, ...]:
    if not isinstance(value, list | tuple):
        return ()
    days = (_as_int(v) for v in value)
    return tuple(sorted({d for d in days if d is not None and 0 <= d <= 6}))


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def parse_schedule(data: dict[str, Any] | None, *, strict: bool = False) -> Schedule:
    """Parse a stored schedule dict into its variant.

    Lenient by default: unknown kinds become ``Once`` (deliver, then retire)
    and bad field values become ``None`` so the recurrence engine can
    degrade instead of raising.

    Raises:
        ValueError: With ``strict=True``, for unknown kinds or parameters
            that would never produce an occurrence.
    """
    if not data:
        return Once()

    kind = str(data.get("kind") or "once")
    cls = SCHEDULE_KINDS.get(kind)
    if cls is None:
        if strict:
            raise ValueError(f"Unknown schedule kind: {kind}")
        logger.warning("unknown_schedule_kind", extra={"schedule.kind": kind})
        return Once()

    interval = _as_int(data.get("interval"))
    step = interval if interval is not None and interval >= 1 else 1

    schedule: Schedule
    if cls is Once:
        schedule = Once()
    elif cls is Off:
        schedule = Off()
    elif cls is Interval:
        minutes = data.get("minutes", data.get("interval_minutes"))
        schedule = Interval(minutes=_as_float(minutes))
    elif cls is Daily:
        schedule = Daily(time_of_day=_as_str(data.get("time_of_day")), interval=step)
    elif cls is Weekly:
        schedule = Weekly(
            time_of_day=_as_str(data.get("time_of_day")),
            days_of_week=_as_days(data.get("days_of_week")),
        )
    elif cls is Monthly:
        schedule = Monthly(
            time_of_day=_as_str(data.get("time_of_day")),
            day_of_month=_as_int(data.get("day_of_month")),
            interval=step,
        )
    elif cls is Yearly:
        schedule = Yearly(
            time_of_day=_as_str(data.get("time_of_day")),
            month=_as_int(data.get("month")),
            day=_as_int(data.get("day")),
            interval=step,
        )
    elif cls is Times:
        raw_times = data.get("times_of_day") or []
        times = raw_times if isinstance(raw_times, list | tuple) else []
        schedule = Times(
            times_of_day=tuple(t for t in (_as_str(v) for v in times) if t),
            days_of_week=_as_days(data.get("days_of_week")),
        )
    elif cls is Hourly:
        schedule = Hourly(
            every_hours=_as_float(data.get("every_hours")),
            window_start=_as_str(data.get("window_start")),
            window_end=_as_str(data.get("window_end")),
            days_of_week=_as_days(data.get("days_of_week")),
        )
    elif cls is EveryXMinutes:
        schedule = EveryXMinutes(
            every_minutes=_as_float(data.get("every_minutes")),
            window_start=_as_str(data.get("window_start")),
            window_end=_as_str(data.get("window_end")),
            days_of_week=_as_days(data.get("days_of_week")),
        )
    else:
        schedule = WeeklyAnchor(anchor=_as_datetime(data.get("anchor")))

    if strict:
        validate_schedule(schedule)
    return schedule


def validate_schedule(schedule: Schedule) -> None:
    """Reject schedules that could never produce an occurrence.

    Raises:
        ValueError: Describing the first invalid parameter.
    """
    from chime.scheduling.recurrence import parse_time_of_day

    def require_time(value: str | None, name: str = "time_of_day") -> None:
        if parse_time_of_day(value) is None:
            raise ValueError(f"{name} must be HH:MM, got {value!r}")

    if isinstance(schedule, Interval):
        if schedule.minutes is None or schedule.minutes <= 0:
            raise ValueError("interval minutes must be greater than zero")
    elif isinstance(schedule, Daily | Weekly):
        require_time(schedule.time_of_day)
    elif isinstance(schedule, Monthly):
        require_time(schedule.time_of_day)
        if schedule.day_of_month is None or not 1 <= schedule.day_of_month <= 31:
            raise ValueError("day_of_month must be between 1 and 31")
    elif isinstance(schedule, Yearly):
        require_time(schedule.time_of_day)
        if schedule.month is None or not 1 <= schedule.month <= 12:
            raise ValueError("month must be between 1 and 12")
        if schedule.day is None or not 1 <= schedule.day <= 31:
            raise ValueError("day must be between 1 and 31")
    elif isinstance(schedule, Times):
        if not schedule.times_of_day:
            raise ValueError("times_of_day must not be empty")
        for value in schedule.times_of_day:
            require_time(value, "times_of_day")
    elif isinstance(schedule, Hourly | EveryXMinutes):
        every = (
            schedule.every_hours
            if isinstance(schedule, Hourly)
            else schedule.every_minutes
        )
        if every is None or every <= 0:
            raise ValueError("cadence must be greater than zero")
        if (schedule.window_start is None) != (schedule.window_end is None):
            raise ValueError("window_start and window_end must be set together")
        if schedule.window_start is not None:
            require_time(schedule.window_start, "window_start")
            require_time(schedule.window_end, "window_end")
    elif isinstance(schedule, WeeklyAnchor):
        if schedule.anchor is None:
            raise ValueError("anchor is required")


def schedule_to_dict(schedule: Schedule) -> dict[str, Any]:
    """Serialize a schedule to the JSON stored on the job row."""
    data: dict[str, Any] = {"kind": schedule_kind(schedule)}
    for name, value in vars(schedule).items():
        if value is None or value == ():
            continue
        if isinstance(value, datetime):
            data[name] = value.isoformat()
        elif isinstance(value, tuple):
            data[name] = list(value)
        else:
            data[name] = value
    return data


# ---------------------------------------------------------------------------
# Families and payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FamilyPolicy:
    """Status vocabulary of one job family."""

    active_statuses: frozenset[str]
    rescheduled_status: str
    terminal_status: str
    # Habits with no further reminder drop next_run_at instead of keeping it
    clear_next_on_terminal: bool = False


class JobFamily(Enum):
    REMINDER = "reminder"
    HABIT = "habit"

    @property
    def policy(self) -> FamilyPolicy:
        return _POLICIES[self]

    @property
    def noun(self) -> str:
        return self.value


_POLICIES = {
    JobFamily.REMINDER: FamilyPolicy(
        active_statuses=frozenset({"scheduled"}),
        rescheduled_status="scheduled",
        terminal_status="sent",
    ),
    JobFamily.HABIT: FamilyPolicy(
        active_statuses=frozenset({"active"}),
        rescheduled_status="active",
        terminal_status="paused",
        clear_next_on_terminal=True,
    ),
}


@dataclass
class ReminderPayload:
    """Reminder text plus Telegram formatting entities."""

    text: str
    entities: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"text": self.text}
        if self.entities:
            data["entities"] = self.entities
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReminderPayload":
        entities = data.get("entities") or []
        return cls(
            text=str(data.get("text", "")),
            entities=[e for e in entities if isinstance(e, dict)],
        )


@dataclass
class HabitPayload:
    """Habit descriptor shown in the reminder message."""

    name: str
    target_count: int = 1
    target_amount: float | None = None
    unit: str = "sessions"
    cadence: str = "daily"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "target_count": self.target_count,
            "unit": self.unit,
            "cadence": self.cadence,
        }
        if self.target_amount is not None:
            data["target_amount"] = self.target_amount
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HabitPayload":
        return cls(
            name=str(data.get("name") or "Habit"),
            target_count=_as_int(data.get("target_count")) or 1,
            target_amount=_as_float(data.get("target_amount")),
            unit=str(data.get("unit") or "sessions"),
            cadence=str(data.get("cadence") or "daily"),
        )


Payload = ReminderPayload | HabitPayload


def parse_payload(family: JobFamily, data: dict[str, Any]) -> Payload:
    if family is JobFamily.HABIT:
        return HabitPayload.from_dict(data)
    return ReminderPayload.from_dict(data)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


@dataclass
class JobLock:
    locked_at: datetime
    lock_expires_at: datetime
    locked_by: str

    def is_live(self, now: datetime) -> bool:
        return self.lock_expires_at > now


@dataclass
class Job:
    """A stored reminder or habit."""

    family: JobFamily
    owner_id: int
    payload: Payload
    schedule: Schedule
    timezone: str
    status: str
    id: str | None = None
    destination_id: int | None = None
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    lock: JobLock | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None

    @property
    def policy(self) -> FamilyPolicy:
        return self.family.policy

    @property
    def is_active(self) -> bool:
        return self.status in self.policy.active_statuses

    @property
    def is_recurring(self) -> bool:
        return is_recurring(self.schedule)
