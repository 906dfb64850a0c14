"""
Application service for operator availability and slot listings.

The service loads availability and appointment snapshots through the store
and delegates the calculation to the domain-level ``AvailabilityResolver``
and ``SlotGenerator``. The current time comes from an injected clock.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import List, Optional

import pendulum
from pendulum import DateTime

from ..domain.availability import AvailabilityResolver
from ..domain.exceptions import InvalidException
from ..domain.models import (
    AvailabilityWindow,
    ExceptionDay,
    Role,
    TimeRange,
    at_time,
)
from ..domain.slot_generator import DEFAULT_SLOT_DURATION_MINUTES, SlotGenerator
from .clock import Clock
from .store import SchedulingStoreProtocol, retry_transient

logger = logging.getLogger(__name__)

# How many days ahead each role can pick a date from
DATE_HORIZON_DAYS = {
    Role.CLIENT: 30,
    Role.OPERATOR: 90,
}


class AvailabilityService:
    """
    Answers "which slots are free?" and manages the operator's opening hours.
    """

    def __init__(
        self,
        store: SchedulingStoreProtocol,
        clock: Clock,
        slot_duration_minutes: int = DEFAULT_SLOT_DURATION_MINUTES,
    ) -> None:
        self._store = store
        self._clock = clock
        self.timezone = clock.timezone
        self.resolver = AvailabilityResolver(timezone=self.timezone)
        self.slot_generator = SlotGenerator(slot_duration_minutes=slot_duration_minutes)

    @property
    def slot_duration_minutes(self) -> int:
        return self.slot_generator.slot_duration_minutes

    # ── Slots ───────────────────────────────────────────────────────────

    def effective_intervals(self, operator_id: str, target_date: date) -> List[TimeRange]:
        """Open intervals of the operator on ``target_date`` after applying exceptions."""
        windows = self._store.list_windows(operator_id)
        exception = self._store.get_exception(operator_id, target_date)
        return self.resolver.resolve(
            operator_id=operator_id,
            target_date=target_date,
            windows=windows,
            exceptions=[exception] if exception else [],
        )

    def get_available_slots(self, operator_id: str, target_date: date, role: Role) -> List[DateTime]:
        """
        List the bookable slot start times for a date.

        Clients never see slots that have already started; operators do.

        Args:
            operator_id: Operator whose calendar is queried
            target_date: Calendar date in the configured timezone
            role: Role of the caller

        Returns:
            Ascending list of slot start times
        """
        role = Role(role)
        intervals = self.effective_intervals(operator_id, target_date)
        if not intervals:
            logger.debug("Operator %s is closed on %s", operator_id, target_date)
            return []

        span_start = min(interval.start for interval in intervals)
        span_end = max(interval.end for interval in intervals)
        appointments = self._store.active_appointments(operator_id, span_start, span_end)

        slots = self.slot_generator.generate(
            intervals=intervals,
            operator_id=operator_id,
            appointments=appointments,
            now=self._clock.now(),
            exclude_past=role is Role.CLIENT,
        )
        logger.debug(
            "%d slot(s) for operator %s on %s (%s view)",
            len(slots), operator_id, target_date, role.value,
        )
        return slots

    def available_dates(
        self,
        operator_id: str,
        start: Optional[date] = None,
        days: Optional[int] = None,
        role: Role = Role.CLIENT,
    ) -> List[date]:
        """
        List the dates within a horizon that still have at least one free slot.

        Each date is resolved like ``get_available_slots``: an exception decides
        the day, otherwise the weekday's recurring windows do.

        Args:
            operator_id: Operator whose calendar is queried
            start: First date of the horizon, defaults to today
            days: Length of the horizon, defaults to DATE_HORIZON_DAYS for the role
            role: Role of the caller

        Returns:
            Ascending list of dates
        """
        role = Role(role)
        horizon = DATE_HORIZON_DAYS[role] if days is None else days
        if horizon <= 0:
            raise ValueError(f"days must be positive, got {horizon}")

        now = self._clock.now()
        origin = start or now.date()
        first = pendulum.date(origin.year, origin.month, origin.day)
        last = first.add(days=horizon - 1)

        windows = self._store.list_windows(operator_id)
        exceptions = self._store.list_exceptions(operator_id, start=first, end=last)
        appointments = self._store.active_appointments(
            operator_id,
            self.day_bounds(first).start,
            self.day_bounds(last).end,
        )

        dates = []
        for offset in range(horizon):
            day = first.add(days=offset)
            intervals = self.resolver.resolve(operator_id, day, windows, exceptions)
            if not intervals:
                continue
            slots = self.slot_generator.generate(
                intervals=intervals,
                operator_id=operator_id,
                appointments=appointments,
                now=now,
                exclude_past=role is Role.CLIENT,
            )
            if slots:
                dates.append(day)

        logger.debug(
            "%d bookable date(s) for operator %s between %s and %s (%s view)",
            len(dates), operator_id, first, last, role.value,
        )
        return dates

    def is_offered(self, operator_id: str, slot_time: DateTime) -> bool:
        """
        Check if a client could be offered a slot starting at ``slot_time``.

        Only opening hours and the clock are considered; bookings are checked
        by the booking transaction.
        """
        local = self.localize(slot_time)
        intervals = self.effective_intervals(operator_id, local.date())
        offered = self.slot_generator.generate(
            intervals=intervals,
            operator_id=operator_id,
            now=self._clock.now(),
            exclude_past=True,
        )
        return local in offered

    def localize(self, moment: datetime) -> DateTime:
        """Express ``moment`` in the configured timezone; naive values are taken as local."""
        return pendulum.instance(moment, tz=self.timezone).in_timezone(self.timezone)

    # ── Recurring windows ───────────────────────────────────────────────

    def list_windows(self, operator_id: str) -> List[AvailabilityWindow]:
        return self._store.list_windows(operator_id)

    def add_window(self, operator_id: str, day_of_week: int, start_time: time, end_time: time) -> AvailabilityWindow:
        window = AvailabilityWindow(
            operator_id=operator_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
        )
        saved = retry_transient(lambda: self._store.add_window(window), "add window")
        logger.info("Operator %s opened %s (window %s)", operator_id, saved.format_display(), saved.id)
        return saved

    def update_window(
        self,
        operator_id: str,
        window_id: int,
        day_of_week: int,
        start_time: time,
        end_time: time,
    ) -> AvailabilityWindow:
        window = AvailabilityWindow(
            id=window_id,
            operator_id=operator_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
        )
        saved = retry_transient(lambda: self._store.update_window(window), "update window")
        logger.info("Operator %s changed window %s to %s", operator_id, window_id, saved.format_display())
        return saved

    def remove_window(self, operator_id: str, window_id: int) -> None:
        retry_transient(lambda: self._store.delete_window(operator_id, window_id), "remove window")
        logger.info("Operator %s removed window %s", operator_id, window_id)

    # ── Exceptions ──────────────────────────────────────────────────────

    def list_exceptions(
        self,
        operator_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[ExceptionDay]:
        return self._store.list_exceptions(operator_id, start=start, end=end)

    def set_exception(
        self,
        operator_id: str,
        on: date,
        is_available: bool,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None,
        reason: Optional[str] = None,
    ) -> ExceptionDay:
        """
        Record the exception for ``on``, replacing any existing one for that date.

        Raises:
            InvalidException: If the hours are malformed or the date is in the past
        """
        exception = ExceptionDay(
            operator_id=operator_id,
            date=on,
            is_available=is_available,
            start_time=start_time,
            end_time=end_time,
            reason=reason,
        )
        self._ensure_editable(on)
        saved = retry_transient(lambda: self._store.save_exception(exception), "save exception")
        logger.info(
            "Operator %s set exception on %s (%s)",
            operator_id, on, "open" if saved.is_available else "closed",
        )
        return saved

    def remove_exception(self, operator_id: str, on: date) -> None:
        self._ensure_editable(on)
        retry_transient(lambda: self._store.delete_exception(operator_id, on), "remove exception")
        logger.info("Operator %s removed exception on %s", operator_id, on)

    def _ensure_editable(self, on: date) -> None:
        """Exceptions for past dates are kept as history and can no longer change."""
        today = self._clock.now().date()
        if on < today:
            raise InvalidException(f"Exception on {on} is in the past and can no longer be changed")

    def day_bounds(self, target_date: date) -> TimeRange:
        """The calendar date as an interval in the configured timezone."""
        start = at_time(target_date, time(0, 0), self.timezone)
        return TimeRange(start=start, end=start.add(days=1))
