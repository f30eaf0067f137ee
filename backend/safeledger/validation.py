from __future__ import annotations
from datetime import date
from safeledger.time_utils import parse_business_date

from typing import Any, Iterable


# Maximum single amount: $9,999,999.99 (999,999,999 cents)
# Keeps sums of a day's figures well inside a 32-bit integer column
MAX_AMOUNT_CENTS = 999_999_999

MAX_NOTE_LENGTH = 1000


class ReconciliationError(Exception):
    """Base class for every error the engine reports to its caller."""
    http_status = 500


class UnauthorizedError(ReconciliationError):
    """401-level: no, unknown or inactive caller identity."""
    http_status = 401


class ForbiddenError(ReconciliationError):
    """403-level: store is outside the caller's authorized set."""
    http_status = 403


class NotFoundError(ReconciliationError):
    """404-level: row absent, or already past the requested transition."""
    http_status = 404


class ValidationError(ReconciliationError, ValueError):
    """400-level input problem."""
    http_status = 400


class ReviewNotRequiredError(ValidationError):
    """Lock attempted on a clean closeout without an override reason."""


class ConflictError(ReconciliationError):
    """409-level: lost a race on a unique constraint or version check. Retry the whole operation."""
    http_status = 409


class LockedError(ReconciliationError):
    """423-level: mutation attempted on a locked or finalized record."""
    http_status = 423


class AlreadyLockedError(LockedError):
    """Second lock on a closeout that a reviewer already locked."""


class PersistenceError(ReconciliationError):
    """503-level: storage-layer failure other than a constraint violation."""
    http_status = 503


def coerce_int(name: str, value: Any) -> int:
    """
    Strict integer coercion for amounts and counts.

    Accepts ints (not bools) and plain digit strings with an optional
    leading minus. Rejects floats, decimals and scientific notation.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def require_cents(name: str, value: Any, *, allow_none: bool = False) -> int | None:
    """Non-negative integer cents within MAX_AMOUNT_CENTS."""
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{name} is required")

    cents = coerce_int(name, value)
    if cents < 0:
        raise ValidationError(f"{name} must be >= 0")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_AMOUNT_CENTS} (${MAX_AMOUNT_CENTS / 100:,.2f})")
    return cents


def require_choice(name: str, value: Any, choices: Iterable[str]) -> str:
    allowed = tuple(choices)
    if not isinstance(value, str) or value not in allowed:
        raise ValidationError(f"{name} must be one of: {', '.join(allowed)}")
    return value


def require_date(value: Any, name: str = "business_date") -> date:
    try:
        return parse_business_date(value)
    except ValueError:
        raise ValidationError(f"{name} must be YYYY-MM-DD")


def require_id(name: str, value: Any) -> int:
    ident = coerce_int(name, value) if value is not None else None
    if ident is None or ident <= 0:
        raise ValidationError(f"{name} must be a positive integer")
    return ident


def clean_text(name: str, value: Any, *, required: bool = False, max_length: int = MAX_NOTE_LENGTH) -> str | None:
    """Trim free text; blank becomes None (or an error when required)."""
    if value is None:
        if required:
            raise ValidationError(f"{name} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")

    stripped = value.strip()
    if not stripped:
        if required:
            raise ValidationError(f"{name} cannot be blank")
        return None
    if len(stripped) > max_length:
        raise ValidationError(f"{name} exceeds max length {max_length}")
    return stripped
