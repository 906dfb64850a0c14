"""
Resolution of an operator's effective opening hours for a single date.
"""

from datetime import date
from typing import Iterable, List, Optional

from .models import AvailabilityWindow, ExceptionDay, TimeRange, day_of_week


class AvailabilityResolver:
    """
    Combines recurring weekly windows with date-specific exceptions.

    Algorithm:
    1. Look up the exception for (operator, date)
    2. Closed exception -> no intervals
    3. Open exception with hours -> that single interval
    4. Open exception without hours -> the whole calendar date
    5. No exception -> the recurring windows for the weekday, in time order

    Overlapping windows for the same weekday are returned as they are; they
    are not merged.
    """

    def __init__(self, timezone: str):
        self.timezone = timezone

    def resolve(
        self,
        operator_id: str,
        target_date: date,
        windows: Iterable[AvailabilityWindow],
        exceptions: Iterable[ExceptionDay],
    ) -> List[TimeRange]:
        """
        Produce the effective open intervals for ``target_date``.

        Args:
            operator_id: Operator whose availability is resolved
            target_date: Calendar date in the configured timezone
            windows: The operator's recurring availability windows
            exceptions: The operator's exception days

        Returns:
            Ordered list of TimeRange objects, possibly empty
        """
        exception = self.find_exception(operator_id, target_date, exceptions)

        if exception is not None:
            interval = exception.interval(self.timezone)
            return [interval] if interval else []

        weekday = day_of_week(target_date)
        intervals = [
            window.on(target_date, self.timezone)
            for window in windows
            if window.operator_id == operator_id and window.day_of_week == weekday
        ]

        return sorted(intervals, key=lambda r: (r.start, r.end))

    @staticmethod
    def find_exception(
        operator_id: str,
        target_date: date,
        exceptions: Iterable[ExceptionDay],
    ) -> Optional[ExceptionDay]:
        """Return the exception recorded for the operator on ``target_date``, if any."""
        for exception in exceptions:
            if exception.operator_id == operator_id and exception.date == target_date:
                return exception
        return None
