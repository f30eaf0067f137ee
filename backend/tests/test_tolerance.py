"""
Tolerance policy tests.

Verifies:
- Variance is signed actual - expected
- The tolerance boundary is inclusive
- Deposit bands: exact pass, inside warn, outside fail
- Negative tolerance configuration is rejected
"""

import pytest

from safeledger.services.tolerance import deposit_status, grade, validate_tolerance
from safeledger.validation import ValidationError


class TestGrade:

    def test_overage_is_positive(self):
        result = grade(20000, 20150, 100)
        assert result.variance_cents == 150
        assert result.out_of_threshold is True

    def test_shortage_is_negative(self):
        result = grade(20000, 19950, 100)
        assert result.variance_cents == -50
        assert result.within_tolerance is True

    @pytest.mark.parametrize("actual", [19900, 20100])
    def test_boundary_is_within_tolerance(self, actual):
        assert grade(20000, actual, 100).within_tolerance is True

    @pytest.mark.parametrize("actual", [19899, 20101])
    def test_one_cent_past_boundary_is_out(self, actual):
        assert grade(20000, actual, 100).out_of_threshold is True

    def test_zero_tolerance_requires_exact(self):
        assert grade(500, 500, 0).within_tolerance is True
        assert grade(500, 501, 0).out_of_threshold is True

    def test_negative_tolerance_rejected(self):
        with pytest.raises(ValidationError):
            grade(100, 100, -1)


class TestDepositStatus:

    def test_bands(self):
        assert deposit_status(0, 100) == "pass"
        assert deposit_status(60, 100) == "warn"
        assert deposit_status(-100, 100) == "warn"
        assert deposit_status(101, 100) == "fail"

    def test_zero_tolerance_never_warns(self):
        assert deposit_status(1, 0) == "fail"

    def test_validate_tolerance_rejects_decimals(self):
        with pytest.raises(ValidationError):
            validate_tolerance(1.5)
        assert validate_tolerance("25") == 25
