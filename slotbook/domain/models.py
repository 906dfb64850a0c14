"""
Domain models for availability, appointments and time interval calculations.
"""

from dataclasses import dataclass, field
from datetime import date, time
from enum import Enum
from typing import Optional

import pendulum
from pendulum import DateTime

from .exceptions import InvalidException, InvalidWindow


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable half-open time range ``[start, end)``.

    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() / 60)

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another."""
        return self.start < other.end and other.start < self.end

    def contains(self, point: DateTime) -> bool:
        """Check if a point in time falls inside this range."""
        return self.start <= point < self.end

    def __str__(self) -> str:
        return f"{self.start.format('DD.MM.YYYY HH:mm')} - {self.end.format('HH:mm')}"


def overlaps(a: TimeRange, b: TimeRange) -> bool:
    """Return True iff the two half-open ranges share at least one instant."""
    return a.overlaps(b)


def contains(a: TimeRange, point: DateTime) -> bool:
    """Return True iff ``point`` lies inside ``a``."""
    return a.contains(point)


class Role(str, Enum):
    """Role of the actor performing an operation."""
    CLIENT = "client"
    OPERATOR = "operator"


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @property
    def is_active(self) -> bool:
        """Cancelled appointments never block a slot."""
        return self is not AppointmentStatus.CANCELLED

    @property
    def is_terminal(self) -> bool:
        return self in (AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED)


WEEKDAY_NAMES = {
    0: "Sunday",
    1: "Monday",
    2: "Tuesday",
    3: "Wednesday",
    4: "Thursday",
    5: "Friday",
    6: "Saturday",
}


def day_of_week(day: date) -> int:
    """Weekday index used by availability windows: 0=Sunday, 6=Saturday."""
    return day.isoweekday() % 7


def at_time(day: date, moment: time, tz: str) -> DateTime:
    """Place a wall-clock time on a calendar date in the given timezone."""
    return pendulum.datetime(
        day.year,
        day.month,
        day.day,
        moment.hour,
        moment.minute,
        moment.second,
        tz=tz,
    )


MIDNIGHT = time(0, 0)


def end_at(day: date, moment: time, tz: str) -> DateTime:
    """
    Place a closing time on a calendar date.

    A closing time of 00:00 stands for the midnight that ends ``day``.
    """
    if moment == MIDNIGHT:
        return at_time(day, MIDNIGHT, tz).add(days=1)
    return at_time(day, moment, tz)


def precedes(start: time, end: time) -> bool:
    """Check if an opening time comes before a closing time (00:00 closes at midnight)."""
    return end == MIDNIGHT or start < end


def format_end_time(moment: time) -> str:
    """Closing time as HH:MM, with the end-of-day midnight shown as 24:00."""
    return "24:00" if moment == MIDNIGHT else f"{moment:%H:%M}"


@dataclass
class AvailabilityWindow:
    """
    Recurring weekly opening of an operator.

    Times are wall-clock times in the configured timezone. An ``end_time``
    of 00:00 closes the window at the end of the day.
    """
    operator_id: str
    day_of_week: int  # 0=Sunday, 6=Saturday
    start_time: time
    end_time: time
    id: Optional[int] = None

    def __post_init__(self):
        if self.day_of_week not in range(7):
            raise InvalidWindow(f"day_of_week must be between 0 and 6, got {self.day_of_week}")
        if not precedes(self.start_time, self.end_time):
            raise InvalidWindow(
                f"Window start {self.start_time:%H:%M} must be before end {format_end_time(self.end_time)}"
            )

    def on(self, day: date, tz: str) -> TimeRange:
        """Map the window onto a concrete date."""
        return TimeRange(start=at_time(day, self.start_time, tz), end=end_at(day, self.end_time, tz))

    def format_display(self) -> str:
        return (
            f"{WEEKDAY_NAMES[self.day_of_week]} "
            f"{self.start_time:%H:%M} – {format_end_time(self.end_time)}"
        )


@dataclass
class ExceptionDay:
    """
    Date-specific override of an operator's recurring availability.

    - ``is_available=False``: the whole date is closed.
    - ``is_available=True`` with both times: a single interval replaces the windows.
    - ``is_available=True`` without times: the whole date is open.
    """
    operator_id: str
    date: date
    is_available: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: Optional[str] = None
    id: Optional[int] = None

    def __post_init__(self):
        if (self.start_time is None) != (self.end_time is None):
            raise InvalidException("start_time and end_time must be given together")
        if self.has_hours and not precedes(self.start_time, self.end_time):
            raise InvalidException(
                f"Exception start {self.start_time:%H:%M} must be before end {format_end_time(self.end_time)}"
            )

    @property
    def has_hours(self) -> bool:
        return self.start_time is not None and self.end_time is not None

    def interval(self, tz: str) -> Optional[TimeRange]:
        """Return the open interval on the exception date, or None when closed."""
        if not self.is_available:
            return None
        if self.has_hours:
            return TimeRange(
                start=at_time(self.date, self.start_time, tz),
                end=end_at(self.date, self.end_time, tz),
            )
        day_start = at_time(self.date, MIDNIGHT, tz)
        return TimeRange(start=day_start, end=day_start.add(days=1))


@dataclass
class Appointment:
    """
    A booking of one client with one operator.

    Only ``status`` changes after creation, and only through the state machine.
    """
    client_id: str
    operator_id: str
    start_time: DateTime
    end_time: DateTime
    status: AppointmentStatus = AppointmentStatus.PENDING
    notes: str = ""
    created_at: Optional[DateTime] = None
    id: Optional[int] = None
    interval: TimeRange = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        self.status = AppointmentStatus(self.status)
        self.interval = TimeRange(start=self.start_time, end=self.end_time)

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def format_display(self) -> str:
        start = self.start_time
        return (
            f"{start.format('ddd DD.MM.YYYY')} | "
            f"{start.format('HH:mm')} – {self.end_time.format('HH:mm')} "
            f"({self.status.value})"
        )
