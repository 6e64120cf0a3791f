from __future__ import annotations

import re
from typing import Optional

from ..core.exceptions import ValidationError

_EMAIL_RE = re.compile(r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$")
_PHONE_RE = re.compile(r"^[+]?[1-9]\d{0,15}$")


def require_non_empty(value: str, field_name: str) -> str:
    if not value or not value.strip():
        raise ValidationError(f"{field_name} is required")
    return value.strip()


def require_length_between(value: str, field_name: str, min_len: int, max_len: int) -> str:
    if value is None or not (min_len <= len(value) <= max_len):
        raise ValidationError(f"{field_name} must be between {min_len} and {max_len} characters")
    return value


def require_email(value: str) -> str:
    value = require_non_empty(value, "Email").lower()
    if not _EMAIL_RE.match(value):
        raise ValidationError("Please enter a valid email")
    return value


def require_phone(value: str) -> str:
    value = require_non_empty(value, "Phone number")
    if not _PHONE_RE.match(value):
        raise ValidationError("Please enter a valid phone number")
    return value


def truncate(value: Optional[str], max_len: int) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value[:max_len] if value else None
