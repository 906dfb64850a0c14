"""
Tests for the BookingService orchestration layer.
"""

import threading
from datetime import date, time

import pytest

from slotbook.domain.exceptions import (
    AppointmentNotFound,
    InvalidTransition,
    SlotUnavailable,
    TransientStorageError,
)
from slotbook.domain.models import AppointmentStatus, Role
from slotbook.domain.state_machine import AppointmentStateMachine
from slotbook.services import AvailabilityService, BookingService

from .helpers import OPERATOR, local


@pytest.fixture
def open_monday(availability):
    availability.add_window(OPERATOR, 1, time(8, 0), time(12, 0))


@pytest.mark.usefixtures("open_monday")
class TestCreateAppointment:
    """Client bookings."""

    def test_booking_is_pending(self, booking):
        """Test a client booking starts pending and lasts one slot."""
        appointment = booking.create_appointment("c-1", OPERATOR, local("2024-06-10 09:00"), notes="First visit")

        assert appointment.id is not None
        assert appointment.status is AppointmentStatus.PENDING
        assert appointment.start_time == local("2024-06-10 09:00")
        assert appointment.end_time == local("2024-06-10 09:30")
        assert appointment.notes == "First visit"
        assert appointment.created_at == local("2024-06-09 12:00")

    def test_same_slot_cannot_be_booked_twice(self, booking):
        booking.create_appointment("c-1", OPERATOR, local("2024-06-10 09:00"))

        with pytest.raises(SlotUnavailable):
            booking.create_appointment("c-2", OPERATOR, local("2024-06-10 09:00"))

    def test_slot_outside_availability_is_rejected(self, booking):
        with pytest.raises(SlotUnavailable, match="not an open slot"):
            booking.create_appointment("c-1", OPERATOR, local("2024-06-10 13:00"))

    def test_misaligned_slot_is_rejected(self, booking):
        with pytest.raises(SlotUnavailable):
            booking.create_appointment("c-1", OPERATOR, local("2024-06-10 09:10"))

    def test_started_slot_is_rejected(self, booking, clock):
        clock.set(local("2024-06-10 09:15"))

        with pytest.raises(SlotUnavailable):
            booking.create_appointment("c-1", OPERATOR, local("2024-06-10 09:00"))

    def test_closed_exception_blocks_booking(self, availability, booking):
        availability.set_exception(OPERATOR, date(2024, 6, 10), is_available=False)

        with pytest.raises(SlotUnavailable):
            booking.create_appointment("c-1", OPERATOR, local("2024-06-10 09:00"))

    def test_cancelled_slot_can_be_booked_again(self, booking):
        """Test a cancellation frees the slot."""
        first = booking.create_appointment("c-1", OPERATOR, local("2024-06-10 09:00"))
        booking.change_appointment_status(first.id, Role.CLIENT, AppointmentStatus.CANCELLED)

        second = booking.create_appointment("c-2", OPERATOR, local("2024-06-10 09:00"))

        assert second.id != first.id
        assert second.status is AppointmentStatus.PENDING

    def test_concurrent_bookings_for_same_slot(self, engine, clock):
        """Exactly one of two racing bookings succeeds."""
        from slotbook.adapters import SqlSchedulingStore

        barrier = threading.Barrier(2)
        results = []
        lock = threading.Lock()

        def attempt(client_id):
            # Separate store and services per thread, sharing the database
            store = SqlSchedulingStore(engine)
            availability = AvailabilityService(store, clock)
            service = BookingService(store, clock, availability)
            barrier.wait()
            try:
                outcome = service.create_appointment(client_id, OPERATOR, local("2024-06-10 10:00"))
            except SlotUnavailable as exc:
                outcome = exc
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=attempt, args=(f"c-{n}",)) for n in (1, 2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        booked = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, SlotUnavailable)]
        assert len(booked) == 1
        assert len(rejected) == 1

        stored = SqlSchedulingStore(engine).list_appointments(operator_id=OPERATOR)
        assert len(stored) == 1


class TestOperatorBooking:
    """Bookings entered by the operator."""

    def test_any_initial_status(self, booking):
        appointment = booking.create_appointment_as_operator(
            "c-1", OPERATOR, local("2024-06-10 09:00"), status=AppointmentStatus.CONFIRMED
        )

        assert appointment.status is AppointmentStatus.CONFIRMED

    def test_outside_opening_hours_allowed(self, booking):
        """Operators are not limited to their published windows."""
        appointment = booking.create_appointment_as_operator("c-1", OPERATOR, local("2024-06-10 19:00"))

        assert appointment.start_time == local("2024-06-10 19:00")

    def test_overlap_still_rejected(self, booking):
        booking.create_appointment_as_operator("c-1", OPERATOR, local("2024-06-10 19:00"))

        with pytest.raises(SlotUnavailable):
            booking.create_appointment_as_operator("c-2", OPERATOR, local("2024-06-10 19:15"))

    def test_cancelled_booking_does_not_block(self, booking):
        booking.create_appointment_as_operator(
            "c-1", OPERATOR, local("2024-06-10 19:00"), status=AppointmentStatus.CANCELLED
        )

        appointment = booking.create_appointment_as_operator("c-2", OPERATOR, local("2024-06-10 19:00"))

        assert appointment.is_active


@pytest.mark.usefixtures("open_monday")
class TestChangeStatus:
    """Status transitions through the service."""

    def test_operator_confirms_then_completes(self, booking):
        appointment = booking.create_appointment("c-1", OPERATOR, local("2024-06-10 09:00"))

        confirmed = booking.change_appointment_status(appointment.id, Role.OPERATOR, AppointmentStatus.CONFIRMED)
        completed = booking.change_appointment_status(appointment.id, Role.OPERATOR, AppointmentStatus.COMPLETED)

        assert confirmed.status is AppointmentStatus.CONFIRMED
        assert completed.status is AppointmentStatus.COMPLETED
        assert booking.get_appointment(appointment.id).status is AppointmentStatus.COMPLETED

    def test_client_cannot_confirm(self, booking):
        appointment = booking.create_appointment("c-1", OPERATOR, local("2024-06-10 09:00"))

        with pytest.raises(InvalidTransition):
            booking.change_appointment_status(appointment.id, Role.CLIENT, AppointmentStatus.CONFIRMED)

        assert booking.get_appointment(appointment.id).status is AppointmentStatus.PENDING

    def test_cancelled_is_final(self, booking):
        appointment = booking.create_appointment("c-1", OPERATOR, local("2024-06-10 09:00"))
        booking.change_appointment_status(appointment.id, Role.OPERATOR, AppointmentStatus.CANCELLED)

        with pytest.raises(InvalidTransition):
            booking.change_appointment_status(appointment.id, Role.OPERATOR, AppointmentStatus.PENDING)

    def test_unknown_appointment(self, booking):
        with pytest.raises(AppointmentNotFound):
            booking.change_appointment_status(999, Role.OPERATOR, AppointmentStatus.CONFIRMED)


@pytest.mark.usefixtures("open_monday")
class TestListings:
    """Appointment listings."""

    def test_list_by_date_and_status(self, booking):
        booking.create_appointment("c-1", OPERATOR, local("2024-06-10 10:00"))
        second = booking.create_appointment("c-2", OPERATOR, local("2024-06-10 08:00"))
        booking.create_appointment_as_operator("c-3", OPERATOR, local("2024-06-11 08:00"))
        booking.change_appointment_status(second.id, Role.OPERATOR, AppointmentStatus.CONFIRMED)

        monday = booking.list_appointments(operator_id=OPERATOR, on=date(2024, 6, 10))
        confirmed = booking.list_appointments(operator_id=OPERATOR, status=AppointmentStatus.CONFIRMED)

        assert [a.client_id for a in monday] == ["c-2", "c-1"]
        assert [a.id for a in confirmed] == [second.id]

    def test_list_by_client(self, booking):
        booking.create_appointment("c-1", OPERATOR, local("2024-06-10 10:00"))
        booking.create_appointment("c-2", OPERATOR, local("2024-06-10 11:00"))

        mine = booking.list_appointments(client_id="c-2")

        assert [a.start_time for a in mine] == [local("2024-06-10 11:00")]
        assert mine[0].start_time.timezone_name == "America/Sao_Paulo"

    def test_upcoming_skips_past_and_cancelled(self, booking, clock):
        booking.create_appointment_as_operator("c-1", OPERATOR, local("2024-06-08 10:00"))
        cancelled = booking.create_appointment("c-1", OPERATOR, local("2024-06-10 08:00"))
        kept = booking.create_appointment("c-1", OPERATOR, local("2024-06-10 09:00"))
        booking.change_appointment_status(cancelled.id, Role.CLIENT, AppointmentStatus.CANCELLED)

        upcoming = booking.upcoming_appointments(client_id="c-1")

        assert [a.id for a in upcoming] == [kept.id]


class _RacingStore:
    """
    Store wrapper whose first status write loses a race.

    Before failing, the competing change is applied to the real store so the
    retry has to work on fresh data.
    """

    def __init__(self, store, competing_role: Role, competing_status: AppointmentStatus, failures: int = 1):
        self._store = store
        self._competing_role = competing_role
        self._competing_status = competing_status
        self._failures = failures
        self.update_calls = 0

    def __getattr__(self, name):
        return getattr(self._store, name)

    def update_appointment(self, appointment_id, mutate):
        self.update_calls += 1
        if self.update_calls <= self._failures:
            if self.update_calls == 1:
                self._store.update_appointment(
                    appointment_id,
                    lambda a: AppointmentStateMachine().apply_transition(
                        a, self._competing_role, self._competing_status
                    ),
                )
            raise TransientStorageError("row version changed")
        return self._store.update_appointment(appointment_id, mutate)


@pytest.mark.usefixtures("open_monday")
class TestStatusChangeRetry:
    """Status changes retried after a concurrent write."""

    def test_retry_sees_concurrent_confirmation(self, store, clock, availability, booking):
        """Test the retried change applies on top of the competing one."""
        appointment = booking.create_appointment("c-1", OPERATOR, local("2024-06-10 09:00"))
        racing = _RacingStore(store, Role.OPERATOR, AppointmentStatus.CONFIRMED)
        service = BookingService(racing, clock, availability)

        completed = service.change_appointment_status(appointment.id, Role.OPERATOR, AppointmentStatus.COMPLETED)

        assert racing.update_calls == 2
        assert completed.status is AppointmentStatus.COMPLETED

    def test_retry_rejects_change_after_concurrent_cancellation(self, store, clock, availability, booking):
        """Test a client cancellation wins over a confirmation that lost the race."""
        appointment = booking.create_appointment("c-1", OPERATOR, local("2024-06-10 09:00"))
        racing = _RacingStore(store, Role.CLIENT, AppointmentStatus.CANCELLED)
        service = BookingService(racing, clock, availability)

        with pytest.raises(InvalidTransition):
            service.change_appointment_status(appointment.id, Role.OPERATOR, AppointmentStatus.CONFIRMED)

        assert racing.update_calls == 2
        assert booking.get_appointment(appointment.id).status is AppointmentStatus.CANCELLED

    def test_persistent_conflict_surfaces_as_transient(self, store, clock, availability, booking):
        appointment = booking.create_appointment("c-1", OPERATOR, local("2024-06-10 09:00"))
        racing = _RacingStore(store, Role.OPERATOR, AppointmentStatus.CONFIRMED, failures=5)
        service = BookingService(racing, clock, availability)

        with pytest.raises(TransientStorageError):
            service.change_appointment_status(appointment.id, Role.OPERATOR, AppointmentStatus.COMPLETED)

        assert racing.update_calls == 2
