"""
Application service for creating appointments and changing their status.

Every booking is re-checked against the persisted appointments inside the
same store transaction as the insert, so a slot shown as free a moment ago
cannot be double-booked by two racing requests.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import List, Optional

from ..domain.conflicts import ConflictChecker
from ..domain.exceptions import SlotUnavailable
from ..domain.models import Appointment, AppointmentStatus, Role
from ..domain.state_machine import AppointmentStateMachine
from .availability_service import AvailabilityService
from .clock import Clock
from .store import SchedulingStoreProtocol, retry_transient

logger = logging.getLogger(__name__)


class BookingService:
    """
    Orchestrates booking attempts and appointment lifecycle changes.
    """

    def __init__(
        self,
        store: SchedulingStoreProtocol,
        clock: Clock,
        availability: AvailabilityService,
        conflict_checker: Optional[ConflictChecker] = None,
        state_machine: Optional[AppointmentStateMachine] = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._availability = availability
        self._conflicts = conflict_checker or ConflictChecker()
        self._state_machine = state_machine or AppointmentStateMachine()

    @property
    def slot_duration_minutes(self) -> int:
        return self._availability.slot_duration_minutes

    # ── Booking ─────────────────────────────────────────────────────────

    def create_appointment(
        self,
        client_id: str,
        operator_id: str,
        slot_time: datetime,
        notes: str = "",
    ) -> Appointment:
        """
        Book a slot on behalf of a client.

        The appointment always starts as ``pending``.

        Raises:
            SlotUnavailable: If the slot is outside the operator's availability,
                has already started, or overlaps an active appointment
        """
        slot_time = self._availability.localize(slot_time)
        if not self._availability.is_offered(operator_id, slot_time):
            logger.info(
                "Rejected booking of %s by client %s: not offered by operator %s",
                slot_time, client_id, operator_id,
            )
            raise SlotUnavailable(
                f"{slot_time.format('DD.MM.YYYY HH:mm')} is not an open slot of operator {operator_id}"
            )

        return self._book(client_id, operator_id, slot_time, notes, AppointmentStatus.PENDING)

    def create_appointment_as_operator(
        self,
        client_id: str,
        operator_id: str,
        slot_time: datetime,
        notes: str = "",
        status: AppointmentStatus = AppointmentStatus.PENDING,
    ) -> Appointment:
        """
        Book a slot directly from the operator's side.

        Any initial status is allowed and opening hours are not enforced, but
        an active appointment still may not overlap another one.
        """
        return self._book(client_id, operator_id, slot_time, notes, AppointmentStatus(status))

    def _book(
        self,
        client_id: str,
        operator_id: str,
        slot_time: datetime,
        notes: str,
        status: AppointmentStatus,
    ) -> Appointment:
        start = self._availability.localize(slot_time)
        appointment = Appointment(
            client_id=client_id,
            operator_id=operator_id,
            start_time=start,
            end_time=start.add(minutes=self.slot_duration_minutes),
            status=status,
            notes=notes or "",
            created_at=self._clock.now(),
        )

        created = self._localize(
            retry_transient(lambda: self._insert_if_free(appointment), "booking")
        )
        logger.info(
            "Booked appointment %s: client=%s operator=%s slot=%s status=%s",
            created.id, client_id, operator_id, start.to_iso8601_string(), created.status.value,
        )
        return created

    def _insert_if_free(self, appointment: Appointment) -> Appointment:
        interval = appointment.interval

        with self._store.booking_transaction(appointment.operator_id) as unit:
            if appointment.is_active:
                current = unit.active_appointments(interval.start, interval.end)
                conflicts = self._conflicts.find_conflicts(interval, appointment.operator_id, current)
                if conflicts:
                    logger.info(
                        "Rejected booking of %s for operator %s: overlaps appointment(s) %s",
                        interval, appointment.operator_id, [c.id for c in conflicts],
                    )
                    raise SlotUnavailable(f"{interval} overlaps an existing appointment")
            return unit.insert(appointment)

    # ── Status changes ──────────────────────────────────────────────────

    def change_appointment_status(
        self,
        appointment_id: int,
        actor_role: Role,
        target_status: AppointmentStatus,
    ) -> Appointment:
        """
        Move an appointment to ``target_status`` if ``actor_role`` may do so.

        Raises:
            AppointmentNotFound: If the appointment does not exist
            InvalidTransition: If the transition is not permitted
        """
        role = Role(actor_role)
        target = AppointmentStatus(target_status)

        def apply(appointment: Appointment) -> Appointment:
            return self._state_machine.apply_transition(appointment, role, target)

        updated = retry_transient(
            lambda: self._store.update_appointment(appointment_id, apply),
            "status change",
        )
        logger.info("Appointment %s is now %s (by %s)", appointment_id, target.value, role.value)
        return self._localize(updated)

    # ── Listings ────────────────────────────────────────────────────────

    def get_appointment(self, appointment_id: int) -> Appointment:
        return self._localize(self._store.get_appointment(appointment_id))

    def list_appointments(
        self,
        operator_id: Optional[str] = None,
        client_id: Optional[str] = None,
        on: Optional[date] = None,
        status: Optional[AppointmentStatus] = None,
    ) -> List[Appointment]:
        """Appointments matching the filters, ordered by start time."""
        start = end = None
        if on is not None:
            day = self._availability.day_bounds(on)
            start, end = day.start, day.end

        appointments = self._store.list_appointments(
            operator_id=operator_id,
            client_id=client_id,
            start=start,
            end=end,
            status=status,
        )
        return [self._localize(a) for a in appointments]

    def upcoming_appointments(
        self,
        operator_id: Optional[str] = None,
        client_id: Optional[str] = None,
        limit: int = 5,
    ) -> List[Appointment]:
        """Next active appointments starting from now."""
        appointments = self._store.list_appointments(
            operator_id=operator_id,
            client_id=client_id,
            start=self._clock.now(),
            active_only=True,
            limit=limit,
        )
        return [self._localize(a) for a in appointments]

    def _localize(self, appointment: Appointment) -> Appointment:
        tz = self._clock.timezone
        return Appointment(
            id=appointment.id,
            client_id=appointment.client_id,
            operator_id=appointment.operator_id,
            start_time=appointment.start_time.in_timezone(tz),
            end_time=appointment.end_time.in_timezone(tz),
            status=appointment.status,
            notes=appointment.notes,
            created_at=appointment.created_at.in_timezone(tz) if appointment.created_at else None,
        )
