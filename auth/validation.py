"""
auth/validation.py -- Input normalization and strength rules for account fields.

Each validator returns None when the value is acceptable, or a short
human-readable reason that the session service puts in the detail of an
invalid_input failure.
"""

from __future__ import annotations

import re

PASSWORD_MIN_LENGTH = 8
# Argon2 has no input limit, but very long inputs are a cheap way to make the
# server burn CPU on every login attempt.
PASSWORD_MAX_LENGTH = 128
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
EMAIL_MAX_LENGTH = 254

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    """Strip surrounding whitespace and case-fold. Emails are unique case-insensitively."""
    return email.strip().casefold()


def validate_email(email: str) -> str | None:
    if not email:
        return "Email is required."
    if len(email) > EMAIL_MAX_LENGTH or not _EMAIL_RE.match(email):
        return "Invalid email address."
    return None


def validate_password(password: str) -> str | None:
    """Minimum length plus lowercase, uppercase and digit character classes."""
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"Password must be at least {PASSWORD_MIN_LENGTH} characters."
    if len(password) > PASSWORD_MAX_LENGTH:
        return f"Password must be at most {PASSWORD_MAX_LENGTH} characters."
    if not re.search(r"[a-z]", password) or not re.search(r"[A-Z]", password) or not re.search(r"\d", password):
        return "Password must contain uppercase, lowercase, and number."
    return None


def validate_name(name: str | None) -> str | None:
    if name is None:
        return None
    stripped = name.strip()
    if len(stripped) < NAME_MIN_LENGTH:
        return f"Name must be at least {NAME_MIN_LENGTH} characters."
    if len(stripped) > NAME_MAX_LENGTH:
        return f"Name must be at most {NAME_MAX_LENGTH} characters."
    return None
