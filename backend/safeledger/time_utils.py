# Overview: UTC timestamps and calendar business dates.

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Naive UTC 'now'; every stored timestamp uses this form."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    ISO-8601 text -> naive UTC datetime (None for blank input).

    Offsets, including a trailing "Z", are converted to UTC; text without an
    offset is taken as UTC already. Raises ValueError on malformed input.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"
    return _as_naive_utc(datetime.fromisoformat(text))


def parse_business_date(value: Union[str, date, None]) -> date:
    """
    Parse a calendar business date ("YYYY-MM-DD").

    datetime values are rejected: a business date carries no time component.
    Raises ValueError on anything else.
    """
    if isinstance(value, datetime):
        raise ValueError("business_date must be a date without a time component")
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError("business_date must be YYYY-MM-DD")

    text = value.strip()
    if len(text) != 10:
        raise ValueError("business_date must be YYYY-MM-DD")
    return date.fromisoformat(text)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Whole-second ISO-8601 with a 'Z' suffix; naive input is UTC."""
    if dt is None:
        return None
    return _as_naive_utc(dt).replace(microsecond=0).isoformat() + "Z"


def to_iso_date(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()
