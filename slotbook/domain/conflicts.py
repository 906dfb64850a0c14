"""
Conflict detection between a candidate interval and existing appointments.
"""

from typing import Iterable, List

from .models import Appointment, TimeRange


class ConflictChecker:
    """
    Decides whether a candidate interval collides with an operator's bookings.

    Cancelled appointments never block, and neither do appointments that
    belong to a different operator.
    """

    def find_conflicts(
        self,
        candidate: TimeRange,
        operator_id: str,
        appointments: Iterable[Appointment],
    ) -> List[Appointment]:
        """Return the active appointments of ``operator_id`` overlapping ``candidate``."""
        return [
            appointment for appointment in appointments
            if appointment.operator_id == operator_id
            and appointment.is_active
            and candidate.overlaps(appointment.interval)
        ]

    def has_conflict(
        self,
        candidate: TimeRange,
        operator_id: str,
        appointments: Iterable[Appointment],
    ) -> bool:
        """Check if ``candidate`` overlaps any active appointment of the operator."""
        return any(
            appointment.operator_id == operator_id
            and appointment.is_active
            and candidate.overlaps(appointment.interval)
            for appointment in appointments
        )
