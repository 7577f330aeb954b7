# Overview: Input coercion for service calls and JSON bodies. Raises before any transaction begins.

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from .time_utils import parse_iso_datetime


# Largest single amount accepted anywhere: 9,999,999.99 in pence.
# Keeps sums comfortably inside a 64-bit column and rejects fat-finger input.
MAX_AMOUNT_PENCE = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion.

    Accepts ints and plain digit strings. Rejects bools, floats, decimals
    and scientific notation: money and quantities are whole numbers.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def positive_int(value: Any, field: str) -> int:
    result = coerce_int(value, field)
    if result <= 0:
        raise ValidationError(f"{field} must be greater than zero")
    return result


def non_negative_int(value: Any, field: str) -> int:
    result = coerce_int(value, field)
    if result < 0:
        raise ValidationError(f"{field} cannot be negative")
    return result


def amount_pence(value: Any, field: str, *, allow_zero: bool = True) -> int:
    result = non_negative_int(value, field) if allow_zero else positive_int(value, field)
    if result > MAX_AMOUNT_PENCE:
        raise ValidationError(f"{field} exceeds maximum allowed amount")
    return result


def optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    return coerce_int(value, field)


def choice(value: Any, field: str, choices: Iterable[str]) -> str:
    allowed = tuple(choices)
    normalized = str(value or "").strip().upper()
    if normalized not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(allowed)}")
    return normalized


def required_text(value: Any, field: str, *, max_length: int = 255) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"{field} is required")
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def optional_text(value: Any, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text[:max_length] or None


def optional_datetime(value: Any, field: str) -> datetime | None:
    """Accept a datetime or an ISO-8601 string (normalized to UTC-naive)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
    raise ValidationError(f"{field} must be a datetime")
