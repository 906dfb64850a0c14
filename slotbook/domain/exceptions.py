"""
Domain-specific exception hierarchy for the slotbook scheduling engine.
"""


class SchedulingError(Exception):
    """Base class for all application-level errors."""


class SlotUnavailable(SchedulingError):
    """Raised when a requested slot cannot be booked (taken, closed or already started)."""


class InvalidTransition(SchedulingError):
    """Raised when a status change is not permitted for the acting role."""

    def __init__(self, current, target, role):
        self.current = current
        self.target = target
        self.role = role
        super().__init__(
            f"Role '{role.value}' may not move an appointment from "
            f"'{current.value}' to '{target.value}'"
        )


class ValidationError(SchedulingError):
    """Raised when availability data is rejected at write time."""


class InvalidWindow(ValidationError):
    """Raised for a malformed recurring availability window."""


class InvalidException(ValidationError):
    """Raised for a malformed or frozen exception day."""


class NotFoundError(SchedulingError):
    """Raised when a referenced record does not exist."""


class AppointmentNotFound(NotFoundError):
    """Raised when an appointment id is unknown."""


class WindowNotFound(NotFoundError):
    """Raised when an availability window id is unknown for the operator."""


class ExceptionNotFound(NotFoundError):
    """Raised when no exception exists for the operator and date."""


class TransientStorageError(SchedulingError):
    """Raised for lock, serialization or stale-version failures; safe to retry once."""
