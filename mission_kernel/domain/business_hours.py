"""
Business hours and Paris-time helpers.

Responsibility:
    Decide whether a timestamp falls inside the configured business-hours
    window, and render / bound Paris wall-clock time for display and daily
    statistics.  All evaluation happens in the policy's time zone (DST-aware
    via ``zoneinfo``), never in the host's local zone.

Architecture position:
    Kernel > Domain -- pure functions.  Time comes in as arguments; the
    caller reads it from an injected Clock.

Edge cases:
    - Naive timestamps are interpreted as wall-clock time in the policy's
      zone (a technician typing "14:00" means 14:00 in Paris).
    - The window is half-open: ``start_hour <= hour < end_hour``, so 20:00
      exactly is outside a 07:00-20:00 window.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

PARIS_TZ_NAME = "Europe/Paris"

_DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


@dataclass(frozen=True)
class BusinessHoursPolicy:
    """Business-hours window; work_days use Monday=0 .. Sunday=6."""

    timezone: str = PARIS_TZ_NAME
    start_hour: int = 7
    end_hour: int = 20
    work_days: frozenset[int] = frozenset({0, 1, 2, 3, 4})

    def __post_init__(self) -> None:
        if not 0 <= self.start_hour < self.end_hour <= 24:
            raise ValueError(
                f"invalid business hours window {self.start_hour}-{self.end_hour}"
            )
        if not self.work_days or not self.work_days <= set(range(7)):
            raise ValueError(f"invalid work days {sorted(self.work_days)}")
        ZoneInfo(self.timezone)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def describe_window(self) -> str:
        """Human-readable window, e.g. ``Mon-Fri 07:00-20:00``."""
        days = sorted(self.work_days)
        if days == list(range(days[0], days[-1] + 1)) and len(days) > 1:
            day_text = f"{_DAY_NAMES[days[0]]}-{_DAY_NAMES[days[-1]]}"
        else:
            day_text = ",".join(_DAY_NAMES[d] for d in days)
        return f"{day_text} {self.start_hour:02d}:00-{self.end_hour:02d}:00"


DEFAULT_POLICY = BusinessHoursPolicy()


def to_local(ts: datetime, tz_name: str = PARIS_TZ_NAME) -> datetime:
    """Express ``ts`` in ``tz_name``; naive values are taken as local wall time."""
    tz = ZoneInfo(tz_name)
    if ts.tzinfo is None:
        return ts.replace(tzinfo=tz)
    return ts.astimezone(tz)


def parse_timestamp(value: datetime | str, tz_name: str = PARIS_TZ_NAME) -> datetime:
    """
    Aware datetime from a datetime or ISO-8601 string (naive = local wall time).

    Raises:
        TypeError: ``value`` is neither a string nor a datetime.
        ValueError: ``value`` is a string that is not ISO-8601.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if not isinstance(value, datetime):
        raise TypeError(f"expected a datetime or an ISO-8601 string, got {type(value).__name__}")
    return to_local(value, tz_name)


def is_business_hours(
    ts: datetime | str,
    policy: BusinessHoursPolicy = DEFAULT_POLICY,
) -> bool:
    """True iff ``ts`` falls on a work day inside ``[start_hour, end_hour)``."""
    local = parse_timestamp(ts, policy.timezone)
    return (
        local.weekday() in policy.work_days
        and policy.start_hour <= local.hour < policy.end_hour
    )


def now_paris(now: datetime) -> str:
    """ISO-8601 rendering of ``now`` in Paris time, with its UTC offset."""
    return to_local(now, PARIS_TZ_NAME).isoformat(timespec="seconds")


def format_paris_datetime(ts: datetime | str) -> str:
    """Render as ``DD/MM/YYYY à HH:MM`` in Paris time."""
    local = parse_timestamp(ts, PARIS_TZ_NAME)
    return local.strftime("%d/%m/%Y à %H:%M")


def local_day_bounds(day: date, tz_name: str = PARIS_TZ_NAME) -> tuple[datetime, datetime]:
    """UTC ``[start, end)`` of the calendar day ``day`` in ``tz_name``."""
    tz = ZoneInfo(tz_name)
    start = datetime.combine(day, time(0, 0), tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
