"""
Persistence protocol consumed by the services, plus the shared retry policy.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Callable, ContextManager, List, Optional, Protocol, TypeVar

from pendulum import DateTime

from ..domain.exceptions import TransientStorageError
from ..domain.models import Appointment, AppointmentStatus, AvailabilityWindow, ExceptionDay

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BookingUnitProtocol(Protocol):
    """Reads and writes executed atomically inside a booking transaction."""

    def active_appointments(self, start: DateTime, end: DateTime) -> List[Appointment]:
        """Return the operator's current active appointments overlapping the range."""

    def insert(self, appointment: Appointment) -> Appointment:
        """Persist a new appointment and return it with its id."""


class SchedulingStoreProtocol(Protocol):
    """Protocol describing the storage behaviour needed by the services."""

    def list_windows(self, operator_id: str) -> List[AvailabilityWindow]: ...

    def add_window(self, window: AvailabilityWindow) -> AvailabilityWindow: ...

    def update_window(self, window: AvailabilityWindow) -> AvailabilityWindow: ...

    def delete_window(self, operator_id: str, window_id: int) -> None: ...

    def list_exceptions(
        self,
        operator_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[ExceptionDay]: ...

    def get_exception(self, operator_id: str, on: date) -> Optional[ExceptionDay]: ...

    def save_exception(self, exception: ExceptionDay) -> ExceptionDay: ...

    def delete_exception(self, operator_id: str, on: date) -> None: ...

    def get_appointment(self, appointment_id: int) -> Appointment: ...

    def list_appointments(
        self,
        operator_id: Optional[str] = None,
        client_id: Optional[str] = None,
        start: Optional[DateTime] = None,
        end: Optional[DateTime] = None,
        status: Optional[AppointmentStatus] = None,
        active_only: bool = False,
        limit: Optional[int] = None,
    ) -> List[Appointment]: ...

    def active_appointments(self, operator_id: str, start: DateTime, end: DateTime) -> List[Appointment]: ...

    def booking_transaction(self, operator_id: str) -> ContextManager[BookingUnitProtocol]: ...

    def update_appointment(
        self,
        appointment_id: int,
        mutate: Callable[[Appointment], Appointment],
    ) -> Appointment: ...


def retry_transient(operation: Callable[[], T], description: str, retries: int = 1) -> T:
    """
    Run ``operation``, repeating it after a TransientStorageError.

    The whole operation is repeated so that every check inside it is made
    again against fresh data.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except TransientStorageError as exc:
            if attempt >= retries:
                raise
            attempt += 1
            logger.warning("Retrying %s after transient failure: %s", description, exc)
