"""
Input rules shared by services: password policy, user-generated text
sanitization, usernames, ages.
"""
from __future__ import annotations

import re
from datetime import date

from paddock.errors import ValidationFailed

PASSWORD_MIN_LENGTH = 8
MIN_AGE = 13
TIP_CONTENT_MAX_LENGTH = 2000
TIP_TYPES = ("tips", "stays", "transit")
EMAIL_MAX_LENGTH = 254

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.]{3,30}$")
_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

_PASSWORD_INJECTION_PATTERNS = [
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"['\";]"),
    re.compile(r"union\s+select", re.IGNORECASE),
    re.compile(r"drop\s+table", re.IGNORECASE),
    re.compile(r"insert\s+into", re.IGNORECASE),
    re.compile(r"delete\s+from", re.IGNORECASE),
]

_CONTENT_INJECTION_PATTERNS = _PASSWORD_INJECTION_PATTERNS + [
    re.compile(r"<\s*iframe", re.IGNORECASE),
    re.compile(r"<\s*object", re.IGNORECASE),
    re.compile(r"<\s*embed", re.IGNORECASE),
    re.compile(r"data:\s*text/html", re.IGNORECASE),
]


# ---------- Passwords ----------


def validate_password(password: str) -> str | None:
    """Return the first failed rule as a message, or None when the password is acceptable."""
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"Password must be at least {PASSWORD_MIN_LENGTH} characters long"
    if not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter"
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"\d", password):
        return "Password must contain at least one number"
    return None


def validate_password_reset(password: str, confirm_password: str) -> str:
    """
    Rules for a password reset form: both fields match, strength rules pass,
    no surrounding whitespace and no injection patterns. Returns the password.
    """
    if password != confirm_password:
        raise ValidationFailed("Passwords do not match")
    error = validate_password(password)
    if error:
        raise ValidationFailed(error)
    if password.strip() != password:
        raise ValidationFailed("Invalid password format")
    for pattern in _PASSWORD_INJECTION_PATTERNS:
        if pattern.search(password):
            raise ValidationFailed("Invalid password format")
    return password


# ---------- User content ----------


def validate_uuid(value: str) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    return bool(_UUID_RE.match(value.strip()))


def validate_tip_type(value: str) -> bool:
    return value in TIP_TYPES


def sanitize_tip_content(raw: str) -> str:
    """Trim and check a track tip. Raises ValidationFailed with a user-facing message."""
    if not isinstance(raw, str):
        raise ValidationFailed("Invalid tip content.")
    trimmed = raw.strip()
    if not trimmed:
        raise ValidationFailed("Tip content is required.")
    if len(trimmed) > TIP_CONTENT_MAX_LENGTH:
        raise ValidationFailed(f"Tip must be {TIP_CONTENT_MAX_LENGTH} characters or less.")
    for pattern in _CONTENT_INJECTION_PATTERNS:
        if pattern.search(trimmed):
            raise ValidationFailed("Tip contains invalid characters or patterns.")
    return trimmed


def sanitize_email(raw: str) -> str:
    """Lowercase and trim; shape is checked by the request model (EmailStr)."""
    email = (raw or "").strip().lower()
    if not email:
        raise ValidationFailed("Email is required")
    if len(email) > EMAIL_MAX_LENGTH:
        raise ValidationFailed("Email is too long")
    for pattern in _PASSWORD_INJECTION_PATTERNS:
        if pattern.search(email):
            raise ValidationFailed("Invalid email format")
    return email


def normalize_username(raw: str) -> str:
    username = (raw or "").strip()
    if not username:
        raise ValidationFailed("Username is required")
    if not _USERNAME_RE.match(username):
        raise ValidationFailed("Username must be 3-30 letters, digits, '_' or '.'")
    return username


# ---------- Age ----------


def compute_age(date_of_birth: date, today: date) -> int:
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def require_min_age(date_of_birth: date, today: date) -> int:
    age = compute_age(date_of_birth, today)
    if age < MIN_AGE:
        raise ValidationFailed(f"You must be at least {MIN_AGE} years old to use this service")
    return age
