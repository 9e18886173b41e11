"""Helper utilities for the civic issue reporting backend"""

import re
import uuid
from datetime import datetime, timezone
from typing import Optional

from utils.exception_handler import ValidationError

# Entity prefixes for generated identifiers
ID_PREFIXES = {
    "issue": "ISS",
    "payment": "PAY",
    "user": "USR",
}

ENTITY_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def generate_id(entity_type: str) -> str:
    """Generate a prefixed identifier, e.g. ISS3F9A0C..."""
    prefix = ID_PREFIXES.get(entity_type.lower())
    if prefix is None:
        raise ValueError(f"Unknown entity type: {entity_type}")
    return f"{prefix}{uuid.uuid4().hex[:24].upper()}"


def utc_now() -> datetime:
    """Server-side timestamp; client-supplied times are never stored"""
    return datetime.now(timezone.utc)


def validate_entity_id(value: Optional[str], field: str = "id") -> str:
    if value is None or not isinstance(value, str) or not ENTITY_ID_PATTERN.match(value.strip()):
        raise ValidationError(f"Invalid {field}: {value!r}")
    return value.strip()


def validate_email(value: Optional[str], field: str = "email") -> str:
    if not value or not isinstance(value, str):
        raise ValidationError(f"{field} is required")
    value = value.strip()
    if not EMAIL_PATTERN.match(value):
        raise ValidationError(f"Invalid {field}: {value!r}")
    return value
