"""
Tests for slot generator.
"""

import pytest

from slotbook.domain.models import Appointment, AppointmentStatus, TimeRange
from slotbook.domain.slot_generator import SlotGenerator

from .helpers import local


def _range(start: str, end: str) -> TimeRange:
    return TimeRange(start=local(start), end=local(end))


def _appointment(start: str, end: str, operator_id="op-1", status=AppointmentStatus.PENDING) -> Appointment:
    return Appointment(
        client_id="c-1",
        operator_id=operator_id,
        start_time=local(start),
        end_time=local(end),
        status=status,
    )


class TestSlotGenerator:
    """Tests for SlotGenerator."""

    def test_walks_interval_in_slot_steps(self):
        """Test a four hour window yields eight 30 minute slots."""
        generator = SlotGenerator(slot_duration_minutes=30)

        slots = generator.generate([_range("2024-06-10 08:00", "2024-06-10 12:00")], "op-1")

        assert len(slots) == 8
        assert slots[0] == local("2024-06-10 08:00")
        assert slots[-1] == local("2024-06-10 11:30")

    def test_no_partial_slot_at_interval_end(self):
        """A slot that would overrun the interval is not offered."""
        generator = SlotGenerator(slot_duration_minutes=30)

        slots = generator.generate([_range("2024-06-10 08:00", "2024-06-10 09:45")], "op-1")

        assert slots == [local("2024-06-10 08:00"), local("2024-06-10 08:30"), local("2024-06-10 09:00")]

    def test_interval_shorter_than_slot_yields_nothing(self):
        generator = SlotGenerator(slot_duration_minutes=60)

        assert generator.generate([_range("2024-06-10 08:00", "2024-06-10 08:45")], "op-1") == []

    def test_excludes_slots_that_already_started(self):
        """With now at 09:15 only the 09:30 slot of 08:00-10:00 remains."""
        generator = SlotGenerator(slot_duration_minutes=30)

        slots = generator.generate(
            [_range("2024-06-10 08:00", "2024-06-10 10:00")],
            "op-1",
            now=local("2024-06-10 09:15"),
            exclude_past=True,
        )

        assert slots == [local("2024-06-10 09:30")]

    def test_slot_starting_now_is_kept(self):
        generator = SlotGenerator(slot_duration_minutes=30)

        slots = generator.generate(
            [_range("2024-06-10 08:00", "2024-06-10 10:00")],
            "op-1",
            now=local("2024-06-10 09:00"),
            exclude_past=True,
        )

        assert slots == [local("2024-06-10 09:00"), local("2024-06-10 09:30")]

    def test_past_slots_kept_when_not_excluded(self):
        """Operators still see the slots of the running day."""
        generator = SlotGenerator(slot_duration_minutes=30)

        slots = generator.generate(
            [_range("2024-06-10 08:00", "2024-06-10 10:00")],
            "op-1",
            now=local("2024-06-10 09:15"),
        )

        assert len(slots) == 4

    def test_exclude_past_requires_now(self):
        generator = SlotGenerator()

        with pytest.raises(ValueError, match="now is required"):
            generator.generate([_range("2024-06-10 08:00", "2024-06-10 10:00")], "op-1", exclude_past=True)

    def test_conflicting_slots_removed(self):
        """Test slots overlapping an active appointment are dropped."""
        generator = SlotGenerator(slot_duration_minutes=30)

        slots = generator.generate(
            [_range("2024-06-10 08:00", "2024-06-10 10:00")],
            "op-1",
            appointments=[_appointment("2024-06-10 08:45", "2024-06-10 09:15")],
        )

        # 08:30 and 09:00 both overlap 08:45-09:15
        assert slots == [local("2024-06-10 08:00"), local("2024-06-10 09:30")]

    def test_cancelled_and_foreign_appointments_do_not_block(self):
        generator = SlotGenerator(slot_duration_minutes=30)

        slots = generator.generate(
            [_range("2024-06-10 08:00", "2024-06-10 09:00")],
            "op-1",
            appointments=[
                _appointment("2024-06-10 08:00", "2024-06-10 08:30", status=AppointmentStatus.CANCELLED),
                _appointment("2024-06-10 08:30", "2024-06-10 09:00", operator_id="op-2"),
            ],
        )

        assert slots == [local("2024-06-10 08:00"), local("2024-06-10 08:30")]

    def test_overlapping_intervals_are_deduplicated(self):
        """Overlapping windows produce each start time only once, sorted."""
        generator = SlotGenerator(slot_duration_minutes=30)

        slots = generator.generate(
            [
                _range("2024-06-10 09:00", "2024-06-10 11:00"),
                _range("2024-06-10 08:00", "2024-06-10 10:00"),
            ],
            "op-1",
        )

        assert slots == [
            local("2024-06-10 08:00"),
            local("2024-06-10 08:30"),
            local("2024-06-10 09:00"),
            local("2024-06-10 09:30"),
            local("2024-06-10 10:00"),
            local("2024-06-10 10:30"),
        ]

    @pytest.mark.parametrize("duration", [0, -15])
    def test_duration_must_be_positive(self, duration):
        with pytest.raises(ValueError):
            SlotGenerator(slot_duration_minutes=duration)
