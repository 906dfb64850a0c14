"""
Shared test constants and time helpers.
"""

import pendulum

TZ = "America/Sao_Paulo"
OPERATOR = "op-1"


def local(value: str):
    """Parse 'YYYY-MM-DD HH:mm' in the test timezone."""
    return pendulum.parse(value, tz=TZ)
