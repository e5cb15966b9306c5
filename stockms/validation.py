from __future__ import annotations

from decimal import Decimal

from stockms.money import to_decimal
from stockms.time_utils import parse_iso_date


class DomainError(Exception):
    """
    Base for service-layer errors.

    code is a stable machine-readable identifier (e.g. INSUFFICIENT_STOCK);
    details carries structured context for the client (per-line shortfalls, ...).
    """
    default_code = "ERROR"

    def __init__(self, message: str, *, code: str | None = None, details=None):
        super().__init__(message)
        self.code = code or self.default_code
        self.details = details

    def to_dict(self) -> dict:
        data = {"error": str(self), "code": self.code}
        if self.details is not None:
            data["details"] = self.details
        return data


class ValidationError(DomainError, ValueError):
    """400-level input problem."""
    default_code = "VALIDATION_ERROR"


class ConflictError(DomainError, ValueError):
    """409-level business rule conflict (wrong status, duplicate, already processed)."""
    default_code = "CONFLICT"


class NotFoundError(DomainError, LookupError):
    """404-level missing entity."""
    default_code = "NOT_FOUND"


class AccessDeniedError(DomainError):
    """403-level role or location access failure."""
    default_code = "FORBIDDEN"


# =============================================================================
# Input coercion helpers (JSON payload -> python values)
# =============================================================================

def parse_decimal(
    value,
    field: str,
    *,
    positive: bool = False,
    non_negative: bool = False,
    maximum: Decimal | int | None = None,
) -> Decimal:
    try:
        result = to_decimal(value, field)
    except ValueError as exc:
        raise ValidationError(str(exc))
    if positive and result <= 0:
        raise ValidationError(f"{field} must be greater than zero")
    if non_negative and result < 0:
        raise ValidationError(f"{field} cannot be negative")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} cannot exceed {maximum}")
    return result


def parse_int(value, field: str, *, non_negative: bool = False) -> int:
    # bool is an int subclass; JSON true/false is never a count
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        result = int(value.strip())
    else:
        raise ValidationError(f"{field} must be an integer")
    if non_negative and result < 0:
        raise ValidationError(f"{field} cannot be negative")
    return result


def parse_choice(value, field: str, choices, *, default=None) -> str:
    if value in (None, ""):
        if default is None:
            raise ValidationError(f"{field} is required")
        return default
    if value not in choices:
        raise ValidationError(f"Invalid {field}. Must be one of: {', '.join(sorted(choices))}")
    return value


def parse_date(value, field: str, *, required: bool = True):
    try:
        result = parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date (YYYY-MM-DD)")
    if result is None and required:
        raise ValidationError(f"{field} is required")
    return result


def clean_text(value, field: str, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text
