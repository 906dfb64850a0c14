"""
Service layer helpers that orchestrate the store and domain logic.
"""

from .availability_service import AvailabilityService
from .booking_service import BookingService
from .clock import Clock, FixedClock, SystemClock
from .store import SchedulingStoreProtocol

__all__ = [
    "AvailabilityService",
    "BookingService",
    "Clock",
    "FixedClock",
    "SchedulingStoreProtocol",
    "SystemClock",
]
