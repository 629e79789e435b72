"""Field-constraint helpers shared by every entity constructor and mutator.

Each helper either returns the cleaned value or raises ``InvalidField`` naming
the offending field. None of them mutate anything.
"""

from __future__ import annotations

from typing import Any, Optional

from .errors import InvalidField

TITLE_MAX = 250
AUTHOR_MAX = 200
ISBN_MAX = 40
LOCATION_MAX = 100
NOTES_MAX = 500
REASON_MAX = 500
NAME_MAX = 200
EMAIL_MAX = 254


def require_text(value: Optional[str], max_len: int, field_name: str) -> str:
    if value is None or not value.strip():
        raise InvalidField(f"{field_name} is required.", field_name)
    trimmed = value.strip()
    if len(trimmed) > max_len:
        raise InvalidField(f"{field_name} cannot exceed {max_len} characters.", field_name)
    return trimmed


def optional_text(value: Optional[str], max_len: int, field_name: str) -> Optional[str]:
    if value is None or not value.strip():
        return None
    trimmed = value.strip()
    if len(trimmed) > max_len:
        raise InvalidField(f"{field_name} cannot exceed {max_len} characters.", field_name)
    return trimmed


def require_positive(n: Any, field_name: str) -> Any:
    if n is None or n <= 0:
        raise InvalidField(f"{field_name} must be greater than zero.", field_name)
    return n


def require_non_negative(n: Any, field_name: str) -> Any:
    if n is None or n < 0:
        raise InvalidField(f"{field_name} cannot be negative.", field_name)
    return n


def require_ordered(start: Any, end: Any, start_name: str, end_name: str) -> None:
    if start is None:
        raise InvalidField(f"{start_name} is required.", start_name)
    if end is None:
        raise InvalidField(f"{end_name} is required.", end_name)
    if end <= start:
        raise InvalidField(f"{end_name} must be later than {start_name}.", end_name)


def require_id(value: Optional[str], field_name: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidField(f"{field_name} is required.", field_name)
    return str(value).strip()
