from __future__ import annotations

from typing import Optional

from ..core.exceptions import MissingField, ValidationError


def require_non_empty(value: Optional[str], field_name: str) -> str:
    if value is None or not str(value).strip():
        raise MissingField(f"{field_name} is required")
    return str(value).strip()


def require_min_length(value: Optional[str], field_name: str, min_len: int) -> str:
    value = require_non_empty(value, field_name)
    if len(value) < min_len:
        raise ValidationError(f"{field_name} must be at least {min_len} characters")
    return value


def require_present(value, field_name: str):
    if value is None:
        raise MissingField(f"{field_name} is required")
    return value
