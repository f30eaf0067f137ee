"""
Tolerance policy shared by drawer counts, rollover totals and closeouts.

Pure functions: no database, no clock. Variance is always signed
actual - expected, so an overage is positive and a shortage negative.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..models.closeouts import CLOSEOUT_STATUS_FAIL, CLOSEOUT_STATUS_PASS, CLOSEOUT_STATUS_WARN
from ..validation import ValidationError, coerce_int


@dataclass(frozen=True)
class ToleranceGrade:
    within_tolerance: bool
    variance_cents: int

    @property
    def out_of_threshold(self) -> bool:
        return not self.within_tolerance


def validate_tolerance(tolerance_cents, name: str = "tolerance_cents") -> int:
    """Tolerance configuration must be a non-negative integer amount of cents."""
    value = coerce_int(name, tolerance_cents)
    if value < 0:
        raise ValidationError(f"{name} must be >= 0")
    return value


def grade(expected_cents: int, actual_cents: int, tolerance_cents: int) -> ToleranceGrade:
    """
    Compare an actual figure with the expected one.

    Out of threshold when abs(actual - expected) > tolerance.
    """
    tolerance = validate_tolerance(tolerance_cents)
    variance = actual_cents - expected_cents
    return ToleranceGrade(within_tolerance=abs(variance) <= tolerance, variance_cents=variance)


def deposit_status(variance_cents: int, tolerance_cents: int) -> str:
    """
    Tolerance band for a deposit variance.

    Exact -> pass, inside the band -> warn, outside -> fail.
    """
    tolerance = validate_tolerance(tolerance_cents)
    if variance_cents == 0:
        return CLOSEOUT_STATUS_PASS
    if abs(variance_cents) <= tolerance:
        return CLOSEOUT_STATUS_WARN
    return CLOSEOUT_STATUS_FAIL
