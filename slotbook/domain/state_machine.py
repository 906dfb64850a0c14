"""
Appointment status lifecycle under role-based permissions.
"""

from typing import Dict, FrozenSet, Tuple

from .exceptions import InvalidTransition
from .models import Appointment, AppointmentStatus, Role

_S = AppointmentStatus

# (role, current status) -> statuses that role may set. Every pair is listed.
TRANSITIONS: Dict[Tuple[Role, AppointmentStatus], FrozenSet[AppointmentStatus]] = {
    (Role.CLIENT, _S.PENDING): frozenset({_S.CANCELLED}),
    (Role.CLIENT, _S.CONFIRMED): frozenset(),
    (Role.CLIENT, _S.COMPLETED): frozenset(),
    (Role.CLIENT, _S.CANCELLED): frozenset(),
    (Role.OPERATOR, _S.PENDING): frozenset({_S.CONFIRMED, _S.CANCELLED, _S.COMPLETED}),
    (Role.OPERATOR, _S.CONFIRMED): frozenset({_S.CANCELLED, _S.COMPLETED}),
    (Role.OPERATOR, _S.COMPLETED): frozenset(),
    (Role.OPERATOR, _S.CANCELLED): frozenset(),
}


class AppointmentStateMachine:
    """Validates and applies status transitions."""

    def __init__(self, transitions: Dict[Tuple[Role, AppointmentStatus], FrozenSet[AppointmentStatus]] = TRANSITIONS):
        self._transitions = transitions

    def allowed_targets(self, current: AppointmentStatus, role: Role) -> FrozenSet[AppointmentStatus]:
        """Statuses ``role`` may move an appointment to from ``current``."""
        return self._transitions[(Role(role), AppointmentStatus(current))]

    def can_transition(self, current: AppointmentStatus, role: Role, target: AppointmentStatus) -> bool:
        return AppointmentStatus(target) in self.allowed_targets(current, role)

    def apply_transition(
        self,
        appointment: Appointment,
        actor_role: Role,
        target_status: AppointmentStatus,
    ) -> Appointment:
        """
        Move ``appointment`` to ``target_status``.

        Only ``status`` is changed.

        Raises:
            InvalidTransition: If the role may not make this change
        """
        role = Role(actor_role)
        target = AppointmentStatus(target_status)

        if not self.can_transition(appointment.status, role, target):
            raise InvalidTransition(appointment.status, target, role)

        appointment.status = target
        return appointment
