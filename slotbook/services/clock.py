"""
Injectable source of the current time.
"""

from typing import Protocol

import pendulum
from pendulum import DateTime


class Clock(Protocol):
    """Protocol describing what the services need to know about "now"."""

    timezone: str

    def now(self) -> DateTime:
        """Return the current time in ``timezone``."""


class SystemClock:
    """Wall clock of the machine, expressed in the configured timezone."""

    def __init__(self, timezone: str):
        self.timezone = timezone

    def now(self) -> DateTime:
        return pendulum.now(self.timezone)


class FixedClock:
    """Clock frozen at a given instant; used for previews and tests."""

    def __init__(self, moment: DateTime, timezone: str | None = None):
        self.timezone = timezone or moment.timezone_name
        self._moment = moment.in_timezone(self.timezone)

    def now(self) -> DateTime:
        return self._moment

    def set(self, moment: DateTime) -> None:
        self._moment = moment.in_timezone(self.timezone)
