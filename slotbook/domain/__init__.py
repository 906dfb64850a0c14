"""
Domain layer - Pure business logic without external dependencies.
"""

from .availability import AvailabilityResolver
from .conflicts import ConflictChecker
from .models import (
    Appointment,
    AppointmentStatus,
    AvailabilityWindow,
    ExceptionDay,
    Role,
    TimeRange,
    contains,
    overlaps,
)
from .slot_generator import SlotGenerator
from .state_machine import AppointmentStateMachine

__all__ = [
    "Appointment",
    "AppointmentStateMachine",
    "AppointmentStatus",
    "AvailabilityResolver",
    "AvailabilityWindow",
    "ConflictChecker",
    "ExceptionDay",
    "Role",
    "SlotGenerator",
    "TimeRange",
    "contains",
    "overlaps",
]
