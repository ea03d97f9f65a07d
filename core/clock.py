"""
core/clock.py -- Injectable time source.

Every component that compares against "now" (token expiry, reset-token expiry,
last_login stamps) takes a Clock callable instead of calling datetime.now()
itself, so tests can move time forward deterministically.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: timezone-aware current UTC time."""
    return datetime.now(timezone.utc)
