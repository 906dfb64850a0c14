"""
Core business logic for turning open intervals into bookable slots.

Pure domain logic without any external dependencies (no database, no I/O,
no implicit clock): ``now`` is always passed in by the caller.
"""

from typing import Dict, Iterable, List, Optional

from pendulum import DateTime

from .conflicts import ConflictChecker
from .models import Appointment, TimeRange

DEFAULT_SLOT_DURATION_MINUTES = 30


class SlotGenerator:
    """
    Discretizes effective availability into fixed-duration slots.

    Algorithm:
    1. Walk each interval from its start in slot-duration steps
    2. Stop before a slot would overrun the interval (no partial slots)
    3. Drop slots that have already started, when past slots are excluded
    4. Drop slots overlapping an active appointment of the operator
    5. De-duplicate by start time and sort ascending
    """

    def __init__(
        self,
        slot_duration_minutes: int = DEFAULT_SLOT_DURATION_MINUTES,
        conflict_checker: Optional[ConflictChecker] = None,
    ):
        if slot_duration_minutes <= 0:
            raise ValueError(f"slot_duration_minutes must be positive, got {slot_duration_minutes}")
        self.slot_duration_minutes = slot_duration_minutes
        self.conflict_checker = conflict_checker or ConflictChecker()

    def slot_for(self, start: DateTime) -> TimeRange:
        """Return the slot interval starting at ``start``."""
        return TimeRange(start=start, end=start.add(minutes=self.slot_duration_minutes))

    def generate(
        self,
        intervals: Iterable[TimeRange],
        operator_id: str,
        appointments: Iterable[Appointment] = (),
        now: Optional[DateTime] = None,
        exclude_past: bool = False,
    ) -> List[DateTime]:
        """
        Generate bookable slot start times.

        Args:
            intervals: Effective open intervals (from AvailabilityResolver)
            operator_id: Operator the slots belong to
            appointments: Snapshot of the operator's appointments
            now: Current time, required when ``exclude_past`` is set
            exclude_past: Drop slots that already started (client views)

        Returns:
            Ascending list of unique slot start times
        """
        if exclude_past and now is None:
            raise ValueError("now is required when exclude_past is set")

        active = [a for a in appointments if a.is_active and a.operator_id == operator_id]
        slots: Dict[DateTime, TimeRange] = {}

        for candidate in self._walk(intervals):
            if exclude_past and candidate.start < now:
                continue
            if self.conflict_checker.has_conflict(candidate, operator_id, active):
                continue
            slots.setdefault(candidate.start, candidate)

        return sorted(slots)

    def _walk(self, intervals: Iterable[TimeRange]) -> Iterable[TimeRange]:
        """Yield every full-length candidate slot inside the intervals."""
        for interval in intervals:
            current = interval.start

            while True:
                candidate = self.slot_for(current)
                if candidate.end > interval.end:
                    break
                yield candidate
                current = candidate.end
