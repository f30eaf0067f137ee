"""
Safe closeout state machine tests.

Verifies:
- Expected deposit = cash sales - expenses, never clamped
- pass / warn / fail grading against the deposit tolerance
- Manager review policy for warn, both ways
- Lock rules and the Locked error on later submissions
- Override path, historical backfill and the review queue
- Expense lines replaced per submission; ungraded draft saves
- A lost race creating the closeout fails closed with ConflictError
"""

from datetime import date

import pytest

from safeledger.models import SafeCloseout, SafeCloseoutExpense, SafeCloseoutPhoto
from safeledger.services import closeout_service
from safeledger.services.closeout_service import compute_expected_deposit, denomination_total, normalize_denominations
from safeledger.services.settings_service import update_store_settings
from safeledger.validation import (
    AlreadyLockedError,
    ConflictError,
    ForbiddenError,
    LockedError,
    NotFoundError,
    ReviewNotRequiredError,
    ValidationError,
)

BUSINESS_DATE = date(2026, 3, 7)

# $50 + 2 x $20 + $5 = 9500 cents
DENOMS_9500 = {"50": 1, "20": 2, "5": 1}
DENOMS_9560 = {"50": 1, "20": 2, "5": 1, "coin_cents": 60}
SUPPLIES = [{"amount_cents": 500, "category": "supplies", "note": "paper towels"}]


def _submit(ctx, store, **overrides):
    params = dict(
        store_id=store.id,
        business_date=BUSINESS_DATE,
        cash_sales_cents=10000,
        actual_deposit_cents=9500,
        denominations=DENOMS_9500,
        expenses=SUPPLIES,
    )
    params.update(overrides)
    return closeout_service.submit_closeout(ctx, **params)


# =============================================================================
# PURE CALCULATIONS
# =============================================================================


class TestCalculations:

    def test_expected_deposit_subtracts_expenses(self):
        assert compute_expected_deposit(10000, [500]) == 9500
        assert compute_expected_deposit(10000, [{"amount_cents": 250}, {"amount_cents": 250}]) == 9500

    def test_expected_deposit_is_not_clamped(self):
        assert compute_expected_deposit(1000, [1500]) == -500

    def test_denomination_total(self):
        assert denomination_total(normalize_denominations(DENOMS_9560)) == 9560
        assert denomination_total(normalize_denominations({})) == 0

    @pytest.mark.parametrize("raw", [
        {"3": 1},
        {"20": -1},
        {"20": 1.5},
        {"coin_cents": "12.5"},
        [("20", 1)],
    ])
    def test_bad_denominations(self, raw):
        with pytest.raises(ValidationError):
            normalize_denominations(raw)


# =============================================================================
# SUBMISSION AND GRADING
# =============================================================================


class TestSubmit:

    def test_exact_deposit_passes(self, ctx_a, ledger_store_a, manager_a):
        closeout = _submit(ctx_a, ledger_store_a)

        assert closeout.status == "pass"
        assert closeout.expected_deposit_cents == 9500
        assert closeout.variance_cents == 0
        assert closeout.denom_total_cents == 9500
        assert closeout.denom_variance_cents == 0
        assert closeout.requires_manager_review is False
        assert closeout.validation_attempts == 1
        assert closeout.profile_id == manager_a.id
        assert closeout.expense_total_cents == 500

    def test_warn_requires_review_by_default(self, ctx_a, ledger_store_a):
        closeout = _submit(ctx_a, ledger_store_a, actual_deposit_cents=9560, denominations=DENOMS_9560)

        assert closeout.status == "warn"
        assert closeout.variance_cents == 60
        assert closeout.denom_variance_cents == 0
        assert closeout.requires_manager_review is True

    def test_warn_without_review_when_policy_off(self, db_session, ctx_a, ledger_store_a):
        update_store_settings(ledger_store_a.id, session=db_session, warn_requires_review=False)

        closeout = _submit(ctx_a, ledger_store_a, actual_deposit_cents=9560, denominations=DENOMS_9560)

        assert closeout.status == "warn"
        assert closeout.requires_manager_review is False

    def test_warn_with_denomination_mismatch_needs_review_when_policy_off(self, db_session, ctx_a, ledger_store_a):
        update_store_settings(ledger_store_a.id, session=db_session, warn_requires_review=False)

        closeout = _submit(ctx_a, ledger_store_a, actual_deposit_cents=9560, denominations=DENOMS_9500)

        assert closeout.status == "warn"
        assert closeout.denom_variance_cents == -60
        assert closeout.requires_manager_review is True

    def test_outside_tolerance_fails(self, ctx_a, ledger_store_a):
        closeout = _submit(ctx_a, ledger_store_a, actual_deposit_cents=9000, denominations={"50": 1, "20": 2})

        assert closeout.status == "fail"
        assert closeout.variance_cents == -500
        assert closeout.requires_manager_review is True

    def test_resubmission_regrades_and_counts_attempts(self, db_session, ctx_a, ledger_store_a):
        first = _submit(ctx_a, ledger_store_a, actual_deposit_cents=9000, denominations={"50": 1, "20": 2})
        second = _submit(ctx_a, ledger_store_a, expenses=None)

        assert second.id == first.id
        assert second.status == "pass"
        assert second.validation_attempts == 2
        assert db_session.query(SafeCloseout).count() == 1
        assert db_session.query(SafeCloseoutExpense).count() == 1

    def test_identical_resubmission_grades_the_same(self, db_session, ctx_a, ledger_store_a):
        first = _submit(ctx_a, ledger_store_a)
        first_grade = (first.status, first.expected_deposit_cents, first.variance_cents)

        second = _submit(ctx_a, ledger_store_a)

        assert (second.status, second.expected_deposit_cents, second.variance_cents) == first_grade
        assert first_grade == ("pass", 9500, 0)
        assert second.validation_attempts == 2
        assert db_session.query(SafeCloseoutExpense).count() == 1

    def test_resubmitted_expenses_replace_saved_lines(self, db_session, ctx_a, ledger_store_a):
        _submit(ctx_a, ledger_store_a)
        closeout = _submit(
            ctx_a, ledger_store_a,
            expenses=[{"amount_cents": 1000, "category": "petty cash"}],
            actual_deposit_cents=9000,
            denominations={"50": 1, "20": 2},
        )

        assert closeout.expected_deposit_cents == 9000
        assert closeout.status == "pass"
        assert [e.category for e in closeout.expenses] == ["petty cash"]
        assert db_session.query(SafeCloseoutExpense).count() == 1

    def test_empty_expense_list_clears_lines(self, db_session, ctx_a, ledger_store_a):
        _submit(ctx_a, ledger_store_a)
        closeout = _submit(ctx_a, ledger_store_a, expenses=[], actual_deposit_cents=10000,
                           denominations={"100": 1})

        assert closeout.expected_deposit_cents == 10000
        assert closeout.status == "pass"
        assert db_session.query(SafeCloseoutExpense).count() == 0

    def test_lost_race_creating_closeout_fails_closed(self, db_session, monkeypatch, ctx_a, ledger_store_a):
        first_id = _submit(ctx_a, ledger_store_a).id

        # A concurrent writer that did not see the committed closeout
        monkeypatch.setattr(closeout_service, "_find_for_update", lambda *args, **kwargs: None)

        with pytest.raises(ConflictError):
            _submit(ctx_a, ledger_store_a, expenses=[{"amount_cents": 700, "category": "repairs"}])

        monkeypatch.undo()
        assert db_session.query(SafeCloseout).count() == 1
        lines = db_session.query(SafeCloseoutExpense).all()
        assert [(line.closeout_id, line.amount_cents) for line in lines] == [(first_id, 500)]
        assert db_session.query(SafeCloseoutPhoto).count() == 0
        assert closeout_service.get_closeout(ctx_a, first_id).validation_attempts == 1

    def test_negative_expected_deposit_forces_review(self, db_session, ctx_a, ledger_store_a):
        update_store_settings(
            ledger_store_a.id, session=db_session, deposit_tolerance_cents=1000, warn_requires_review=False
        )

        closeout = _submit(
            ctx_a, ledger_store_a,
            cash_sales_cents=1000,
            expenses=[{"amount_cents": 1500, "category": "repairs"}],
            actual_deposit_cents=0,
            denominations={},
        )

        assert closeout.expected_deposit_cents == -500
        assert closeout.status == "warn"
        assert closeout.requires_manager_review is True

    def test_ledger_disabled_rejects(self, ctx_a, store_a):
        with pytest.raises(ValidationError):
            _submit(ctx_a, store_a)

    def test_historical_backfill_bypasses_gate_and_review(self, ctx_a, store_a, manager_a, clock):
        closeout = _submit(
            ctx_a, store_a,
            actual_deposit_cents=9000,
            denominations={"50": 1},
            historical_backfill=True,
        )

        assert closeout.is_historical_backfill is True
        assert closeout.status == "fail"
        assert closeout.variance_cents == -500
        assert closeout.denom_variance_cents == -4000
        assert closeout.requires_manager_review is False
        assert closeout.edited_at == clock.current
        assert closeout.edited_by == manager_a.id

    def test_live_submission_after_backfill_is_gated(self, ctx_a, ledger_store_a):
        _submit(ctx_a, ledger_store_a, historical_backfill=True)

        closeout = _submit(ctx_a, ledger_store_a, actual_deposit_cents=5000, denominations={"50": 1})

        assert closeout.status == "fail"
        assert closeout.requires_manager_review is True
        assert closeout.is_historical_backfill is False
        assert closeout.validation_attempts == 2

    def test_live_closeout_cannot_be_backfilled(self, ctx_a, ledger_store_a):
        _submit(ctx_a, ledger_store_a, actual_deposit_cents=5000, denominations={"50": 1})

        with pytest.raises(ValidationError):
            _submit(ctx_a, ledger_store_a, actual_deposit_cents=5000, denominations={"50": 1},
                    historical_backfill=True)

    @pytest.mark.parametrize("overrides", [
        {"cash_sales_cents": -1},
        {"actual_deposit_cents": 95.0},
        {"business_date": "03/07/2026"},
        {"expenses": [{"amount_cents": 100}]},
        {"expenses": [{"amount_cents": -5, "category": "x"}]},
        {"denominations": {"25": 1}},
    ])
    def test_invalid_input_rejected_before_write(self, db_session, ctx_a, ledger_store_a, overrides):
        with pytest.raises(ValidationError):
            _submit(ctx_a, ledger_store_a, **overrides)
        assert db_session.query(SafeCloseout).count() == 0

    def test_closeout_id_must_match_store_and_date(self, ctx_a, ledger_store_a):
        closeout = _submit(ctx_a, ledger_store_a)
        with pytest.raises(ValidationError):
            _submit(ctx_a, ledger_store_a, closeout_id=closeout.id, business_date="2026-03-08")

    def test_other_store_forbidden(self, ctx_b, ledger_store_a):
        with pytest.raises(ForbiddenError):
            _submit(ctx_b, ledger_store_a)


# =============================================================================
# DRAFTS
# =============================================================================


def _save_draft(ctx, store, **fields):
    return closeout_service.save_closeout_draft(ctx, store_id=store.id, business_date=BUSINESS_DATE, **fields)


class TestDraft:

    def test_draft_is_saved_ungraded(self, db_session, ctx_a, ledger_store_a, manager_a):
        draft = _save_draft(ctx_a, ledger_store_a, cash_sales_cents=10000, denominations=DENOMS_9500,
                            expenses=SUPPLIES)

        assert draft.status == "draft"
        assert draft.validation_attempts == 0
        assert draft.requires_manager_review is False
        assert draft.cash_sales_cents == 10000
        assert draft.expected_deposit_cents == 0
        assert draft.expense_total_cents == 500
        assert draft.profile_id == manager_a.id

    def test_submit_grades_the_saved_draft(self, db_session, ctx_a, ledger_store_a):
        draft_id = _save_draft(ctx_a, ledger_store_a, cash_sales_cents=10000, expenses=SUPPLIES).id

        closeout = _submit(ctx_a, ledger_store_a, expenses=None)

        assert closeout.id == draft_id
        assert closeout.status == "pass"
        assert closeout.validation_attempts == 1
        assert closeout.expense_total_cents == 500
        assert db_session.query(SafeCloseout).count() == 1

    def test_draft_over_graded_closeout_only_changes_given_figures(self, ctx_a, ledger_store_a):
        _submit(ctx_a, ledger_store_a, actual_deposit_cents=9000, denominations={"50": 1, "20": 2})

        draft = _save_draft(ctx_a, ledger_store_a, cash_sales_cents=10100)

        assert draft.status == "draft"
        assert draft.requires_manager_review is False
        assert draft.cash_sales_cents == 10100
        assert draft.actual_deposit_cents == 9000
        assert draft.validation_attempts == 1
        assert [e.category for e in draft.expenses] == ["supplies"]
        assert closeout_service.list_review_queue(ctx_a) == []

    def test_draft_on_locked_closeout_refused(self, ctx_a, ledger_store_a):
        closeout = _submit(ctx_a, ledger_store_a, actual_deposit_cents=9000, denominations={"50": 1, "20": 2})
        closeout_service.lock_closeout(ctx_a, closeout.id)

        with pytest.raises(LockedError):
            _save_draft(ctx_a, ledger_store_a, cash_sales_cents=1)

    def test_draft_rejects_bad_input_and_other_stores(self, db_session, ctx_a, ctx_b, ledger_store_a):
        with pytest.raises(ValidationError):
            _save_draft(ctx_a, ledger_store_a, cash_sales_cents=-1)
        with pytest.raises(ForbiddenError):
            _save_draft(ctx_b, ledger_store_a, cash_sales_cents=100)
        assert db_session.query(SafeCloseout).count() == 0


# =============================================================================
# LOCKING
# =============================================================================


class TestLock:

    def test_clean_pass_cannot_be_locked_without_override(self, ctx_a, ledger_store_a):
        closeout = _submit(ctx_a, ledger_store_a)
        with pytest.raises(ReviewNotRequiredError):
            closeout_service.lock_closeout(ctx_a, closeout.id)

    def test_clean_pass_locks_with_override_reason(self, ctx_a, ledger_store_a, manager_a):
        closeout = _submit(ctx_a, ledger_store_a)

        locked = closeout_service.lock_closeout(ctx_a, closeout.id, override_reason="month-end audit")

        assert locked.status == "locked"
        assert locked.edit_reason == "month-end audit"
        assert locked.edited_by == manager_a.id
        assert locked.reviewed_by == manager_a.id

    def test_failed_closeout_locks_and_refuses_resubmission(self, ctx_a, ledger_store_a, manager_a, clock):
        closeout = _submit(ctx_a, ledger_store_a, actual_deposit_cents=9000, denominations={"50": 1, "20": 2})

        locked = closeout_service.lock_closeout(ctx_a, closeout.id)
        assert locked.status == "locked"
        assert locked.requires_manager_review is False
        assert locked.reviewed_at == clock.current

        with pytest.raises(LockedError):
            _submit(ctx_a, ledger_store_a)
        with pytest.raises(LockedError):
            _submit(ctx_a, ledger_store_a, closeout_id=closeout.id)

    def test_second_lock_is_already_locked(self, ctx_a, ledger_store_a):
        closeout = _submit(ctx_a, ledger_store_a, actual_deposit_cents=9560, denominations=DENOMS_9560)
        closeout_service.lock_closeout(ctx_a, closeout.id)

        with pytest.raises(AlreadyLockedError):
            closeout_service.lock_closeout(ctx_a, closeout.id)

    def test_draft_cannot_be_locked(self, db_session, ctx_a, store_a):
        draft = SafeCloseout(store_id=store_a.id, business_date=BUSINESS_DATE, status="draft", denominations={})
        db_session.add(draft)
        db_session.commit()

        with pytest.raises(ValidationError):
            closeout_service.lock_closeout(ctx_a, draft.id)

    def test_unknown_closeout(self, ctx_a):
        with pytest.raises(NotFoundError):
            closeout_service.lock_closeout(ctx_a, 777)


# =============================================================================
# OVERRIDE
# =============================================================================


class TestOverride:

    def test_override_locked_closeout_keeps_it_locked(self, ctx_a, ledger_store_a, manager_a, clock):
        closeout = _submit(ctx_a, ledger_store_a, actual_deposit_cents=9000, denominations={"50": 1, "20": 2})
        closeout_service.lock_closeout(ctx_a, closeout.id)
        clock.advance(days=1)

        edited = closeout_service.override_closeout(
            ctx_a, closeout.id, "bank receipt shows 9500",
            actual_deposit_cents=9500, denominations=DENOMS_9500,
        )

        assert edited.status == "locked"
        assert edited.variance_cents == 0
        assert edited.denom_variance_cents == 0
        assert edited.validation_attempts == 1
        assert edited.edit_reason == "bank receipt shows 9500"
        assert edited.edited_at == clock.current
        assert edited.edited_by == manager_a.id

    def test_override_unlocked_regrades(self, ctx_a, ledger_store_a):
        closeout = _submit(ctx_a, ledger_store_a)

        edited = closeout_service.override_closeout(ctx_a, closeout.id, "cash miscounted", cash_sales_cents=10100)

        assert edited.expected_deposit_cents == 9600
        assert edited.status == "warn"
        assert edited.requires_manager_review is True
        assert edited.validation_attempts == 1

    def test_override_requires_reason_and_known_fields(self, ctx_a, ledger_store_a):
        closeout = _submit(ctx_a, ledger_store_a)

        with pytest.raises(ValidationError):
            closeout_service.override_closeout(ctx_a, closeout.id, "   ", cash_sales_cents=1)
        with pytest.raises(ValidationError):
            closeout_service.override_closeout(ctx_a, closeout.id, "fix", status="pass")


# =============================================================================
# QUERIES
# =============================================================================


class TestQueries:

    def test_review_queue_newest_first_and_excludes_locked(self, ctx_a, ledger_store_a):
        older = _submit(ctx_a, ledger_store_a, business_date="2026-03-05", actual_deposit_cents=9000,
                        denominations={"50": 1, "20": 2})
        newer = _submit(ctx_a, ledger_store_a, business_date="2026-03-06", actual_deposit_cents=9000,
                        denominations={"50": 1, "20": 2})
        _submit(ctx_a, ledger_store_a)  # clean pass
        locked = _submit(ctx_a, ledger_store_a, business_date="2026-03-04", actual_deposit_cents=9000,
                         denominations={"50": 1, "20": 2})
        closeout_service.lock_closeout(ctx_a, locked.id)

        queue = closeout_service.list_review_queue(ctx_a)
        assert [c.id for c in queue] == [newer.id, older.id]

    def test_list_closeouts_filters(self, ctx_a, ledger_store_a):
        _submit(ctx_a, ledger_store_a, business_date="2026-03-01")
        failing = _submit(ctx_a, ledger_store_a, business_date="2026-03-02", actual_deposit_cents=0,
                          denominations={})

        assert len(closeout_service.list_closeouts(ctx_a)) == 2
        assert [c.id for c in closeout_service.list_closeouts(ctx_a, status="fail")] == [failing.id]
        assert len(closeout_service.list_closeouts(ctx_a, start_date="2026-03-02", end_date="2026-03-31")) == 1

    def test_other_store_cannot_read(self, ctx_a, ctx_b, ledger_store_a):
        closeout = _submit(ctx_a, ledger_store_a)

        assert closeout_service.list_closeouts(ctx_b) == []
        with pytest.raises(ForbiddenError):
            closeout_service.get_closeout(ctx_b, closeout.id)

    def test_summary_includes_expenses(self, ctx_a, ledger_store_a):
        closeout = _submit(ctx_a, ledger_store_a)

        summary = closeout_service.get_closeout_summary(ctx_a, closeout.id)
        assert summary["expense_total_cents"] == 500
        assert summary["expenses"][0]["category"] == "supplies"
        assert summary["photos"] == []
