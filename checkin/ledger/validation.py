"""Input validation for people joining the queue."""

from __future__ import annotations

import re

from .errors import ValidationError

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50
EMAIL_MAX_LENGTH = 254

_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\s\-'.]+$")
_EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}$")


def validate_name(raw: str | None) -> str:
    """Return the trimmed name or raise ``ValidationError``."""

    trimmed = (raw or "").strip()
    if not trimmed:
        raise ValidationError("Please enter your name", field="name")
    if len(trimmed) < NAME_MIN_LENGTH:
        raise ValidationError(f"Name must be at least {NAME_MIN_LENGTH} characters", field="name")
    if len(trimmed) > NAME_MAX_LENGTH:
        raise ValidationError(f"Name must be less than {NAME_MAX_LENGTH} characters", field="name")
    if not _NAME_PATTERN.match(trimmed):
        raise ValidationError("Name contains invalid characters", field="name")
    return trimmed


def normalize_email(raw: str | None) -> str | None:
    """Return the lower-cased email, ``None`` when absent.

    Emails are only used to stop duplicate joins, so they are compared
    case-insensitively.
    """

    if raw is None:
        return None
    trimmed = raw.strip()
    if not trimmed:
        return None
    if len(trimmed) > EMAIL_MAX_LENGTH or ".." in trimmed or not _EMAIL_PATTERN.match(trimmed):
        raise ValidationError("Please enter a valid email address", field="email")
    return trimmed.lower()
