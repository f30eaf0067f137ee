# backend/safeledger/services/closeout_service.py
"""
Safe closeout reconciliation.

WHY: At the end of each business day the closer counts the safe deposit.
The deposit is graded against what the day's cash sales say it should be,
and anything that does not reconcile cleanly goes to a manager.

LIFECYCLE:
1. DRAFT: saved ungraded by save_closeout_draft(), or created by the first
   submission for (store, business date)
2. PASS / WARN / FAIL: re-graded on every submission while unlocked
3. LOCKED: manager review; terminal. Submissions are refused from here on
   and figures change only through override_closeout().

GRADING:
- expected deposit = cash sales - sum(expense lines); may be negative
- variance = actual deposit - expected deposit
- denomination variance = counted bills/coins - declared deposit
- |variance| == 0 -> pass; <= deposit tolerance -> warn; else fail

MANAGER REVIEW is required when any of:
- status is fail
- the denomination count disagrees with the declared deposit
- expected deposit is negative (expenses exceeded cash sales)
- status is warn and the store's warn_requires_review setting is on
Historical backfills compute every field but never request review.

EXPENSES: a submission, draft save or override that carries an expense list
replaces the closeout's lines with it, so a re-sent form grades the same.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from ..models import SafeCloseout, SafeCloseoutExpense, Shift
from ..models.closeouts import (
    CLOSEOUT_STATUS_DRAFT,
    CLOSEOUT_STATUS_FAIL,
    CLOSEOUT_STATUS_LOCKED,
    CLOSEOUT_STATUS_PASS,
    CLOSEOUT_STATUS_WARN,
    CLOSEOUT_STATUSES,
)
from ..validation import (
    AlreadyLockedError,
    LockedError,
    NotFoundError,
    ReviewNotRequiredError,
    ValidationError,
    clean_text,
    coerce_int,
    require_cents,
    require_choice,
    require_date,
    require_id,
)
from .concurrency import atomic, lock_for_update
from .settings_service import get_store_settings
from .tolerance import deposit_status

logger = logging.getLogger(__name__)


# Bill denominations counted by quantity, in cents per unit
DENOMINATION_VALUES = {
    "100": 10000,
    "50": 5000,
    "20": 2000,
    "10": 1000,
    "5": 500,
    "2": 200,
    "1": 100,
}
# Loose coins are entered as a cents amount, not a quantity
COIN_CENTS_KEY = "coin_cents"

MAX_EXPENSE_CATEGORY_LENGTH = 64


@dataclass(frozen=True)
class CloseoutGrade:
    status: str
    expected_deposit_cents: int
    variance_cents: int
    denom_total_cents: int
    denom_variance_cents: int
    requires_manager_review: bool


# =============================================================================
# PURE CALCULATIONS
# =============================================================================

def _amount_of(item) -> int:
    if isinstance(item, int) and not isinstance(item, bool):
        return item
    if isinstance(item, dict):
        return item["amount_cents"]
    return item.amount_cents


def compute_expected_deposit(cash_sales_cents: int, expenses) -> int:
    """
    Cash sales minus every expense line.

    Never clamped: a negative result means more cash was paid out than
    taken, and must stay visible to the reviewer.
    """
    return cash_sales_cents - sum(_amount_of(item) for item in expenses)


def normalize_denominations(raw) -> dict:
    """
    Validate a denomination breakdown.

    Keys are bill values ("100" ... "1") mapped to a count, plus optional
    "coin_cents". Missing bills count as zero.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValidationError("denominations must be an object")

    normalized = {}
    for key, value in raw.items():
        key = str(key)
        if key != COIN_CENTS_KEY and key not in DENOMINATION_VALUES:
            raise ValidationError(f"Unknown denomination: {key}")
        quantity = coerce_int(f"denominations[{key}]", value)
        if quantity < 0:
            raise ValidationError("denomination quantities must be >= 0")
        normalized[key] = quantity

    ordered = {key: normalized.get(key, 0) for key in DENOMINATION_VALUES}
    if COIN_CENTS_KEY in normalized:
        ordered[COIN_CENTS_KEY] = normalized[COIN_CENTS_KEY]
    return ordered


def denomination_total(denominations: dict) -> int:
    total = sum(DENOMINATION_VALUES[key] * denominations.get(key, 0) for key in DENOMINATION_VALUES)
    return total + denominations.get(COIN_CENTS_KEY, 0)


def requires_review(
    status: str,
    denom_variance_cents: int,
    expected_deposit_cents: int,
    *,
    warn_requires_review: bool,
) -> bool:
    if status == CLOSEOUT_STATUS_FAIL:
        return True
    if denom_variance_cents != 0:
        return True
    if expected_deposit_cents < 0:
        return True
    return status == CLOSEOUT_STATUS_WARN and warn_requires_review


def grade_closeout(
    *,
    cash_sales_cents: int,
    expenses,
    actual_deposit_cents: int,
    denominations: dict,
    deposit_tolerance_cents: int,
    warn_requires_review: bool = True,
    historical_backfill: bool = False,
) -> CloseoutGrade:
    expected = compute_expected_deposit(cash_sales_cents, expenses)
    denom_total = denomination_total(denominations)
    variance = actual_deposit_cents - expected
    denom_variance = denom_total - actual_deposit_cents
    status = deposit_status(variance, deposit_tolerance_cents)

    review = False
    if not historical_backfill:
        review = requires_review(status, denom_variance, expected, warn_requires_review=warn_requires_review)

    return CloseoutGrade(
        status=status,
        expected_deposit_cents=expected,
        variance_cents=variance,
        denom_total_cents=denom_total,
        denom_variance_cents=denom_variance,
        requires_manager_review=review,
    )


# =============================================================================
# INPUT VALIDATION
# =============================================================================

def _validate_expenses(raw) -> list[dict] | None:
    if raw is None:
        return None
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("expenses must be a list")

    cleaned = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValidationError("each expense must be an object")
        cleaned.append({
            "amount_cents": require_cents("expense.amount_cents", item.get("amount_cents")),
            "category": clean_text(
                "expense.category",
                item.get("category"),
                required=True,
                max_length=MAX_EXPENSE_CATEGORY_LENGTH,
            ),
            "note": clean_text("expense.note", item.get("note")),
        })
    return cleaned


def _validate_figures(figures: dict) -> dict:
    """Validate the optional figure keywords shared by submit and override."""
    cleaned = {}
    for name in ("cash_sales_cents", "card_sales_cents", "other_sales_cents", "actual_deposit_cents"):
        if figures.get(name) is not None:
            cleaned[name] = require_cents(name, figures[name])
    if "drawer_count_cents" in figures:
        cleaned["drawer_count_cents"] = require_cents(
            "drawer_count_cents", figures["drawer_count_cents"], allow_none=True
        )
    if figures.get("denominations") is not None:
        cleaned["denominations"] = normalize_denominations(figures["denominations"])
    if "deposit_override_reason" in figures:
        cleaned["deposit_override_reason"] = clean_text(
            "deposit_override_reason", figures["deposit_override_reason"]
        )
    return cleaned


def _replace_expenses(ctx, closeout: SafeCloseout, expenses: list[dict] | None) -> None:
    """The given list becomes the closeout's full expense set; None keeps it."""
    if expenses is None:
        return
    closeout.expenses = [
        SafeCloseoutExpense(
            amount_cents=item["amount_cents"],
            category=item["category"],
            note=item["note"],
            created_by=ctx.actor_id,
        )
        for item in expenses
    ]


def _apply_grade(closeout: SafeCloseout, graded: CloseoutGrade) -> None:
    closeout.expected_deposit_cents = graded.expected_deposit_cents
    closeout.variance_cents = graded.variance_cents
    closeout.denom_total_cents = graded.denom_total_cents
    closeout.denom_variance_cents = graded.denom_variance_cents


def _load_for_update(session, closeout_id: int) -> SafeCloseout:
    closeout = lock_for_update(session.query(SafeCloseout).filter_by(id=closeout_id)).first()
    if closeout is None:
        raise NotFoundError(f"Closeout {closeout_id} not found")
    return closeout


def _find_for_update(session, store_id: int, business_date) -> SafeCloseout | None:
    return lock_for_update(
        session.query(SafeCloseout).filter_by(store_id=store_id, business_date=business_date)
    ).first()


def _load_or_create(ctx, *, store_id: int, business_date, closeout_id: int | None, **new_fields) -> SafeCloseout:
    """
    The (store, business date) closeout, locked; created as a draft if absent.

    A concurrent creator loses on uq_safe_closeouts_store_date at flush.
    """
    session = ctx.session
    if closeout_id is not None:
        closeout = _load_for_update(session, closeout_id)
        if closeout.store_id != store_id or closeout.business_date != business_date:
            raise ValidationError("closeout_id does not match store_id and business_date")
        return closeout

    closeout = _find_for_update(session, store_id, business_date)
    if closeout is None:
        closeout = SafeCloseout(
            store_id=store_id,
            business_date=business_date,
            profile_id=ctx.actor_id,
            status=CLOSEOUT_STATUS_DRAFT,
            denominations={},
            validation_attempts=0,
            requires_manager_review=False,
            **new_fields,
        )
        session.add(closeout)
        session.flush()
    return closeout


def _check_shift(session, shift_id: int | None, store_id: int) -> None:
    if shift_id is None:
        return
    shift = session.get(Shift, shift_id)
    if shift is None:
        raise NotFoundError(f"Shift {shift_id} not found")
    if shift.store_id != store_id:
        raise ValidationError("shift_id belongs to a different store")


# =============================================================================
# SUBMISSION
# =============================================================================

def submit_closeout(
    ctx,
    *,
    store_id: int,
    business_date,
    cash_sales_cents: int,
    actual_deposit_cents: int,
    denominations: dict | None = None,
    expenses: list | None = None,
    card_sales_cents: int = 0,
    other_sales_cents: int = 0,
    drawer_count_cents: int | None = None,
    deposit_override_reason: str | None = None,
    shift_id: int | None = None,
    closeout_id: int | None = None,
    historical_backfill: bool = False,
) -> SafeCloseout:
    """
    Submit (or re-submit) the day's closeout and grade it.

    The first submission for (store, business date) creates the closeout.
    Every submission recomputes the derived figures, re-grades the status
    and increments validation_attempts; identical input grades identically.
    The engine does not cap attempts.

    Args:
        closeout_id: Optional; when given it must be this store/date's closeout
        expenses: The day's full expense set [{"amount_cents", "category",
            "note"?}], replacing any saved lines. None keeps the saved lines.
        denominations: Bill counts by value plus optional "coin_cents"
        historical_backfill: Import of prior-period data. Skips the
            ledger-enabled gate and never requests manager review. Applies
            to this submission only: a later live submission clears the
            backfill flag and is gated normally. A closeout already
            submitted live cannot be backfilled.

    Raises:
        ValidationError: bad input, or safe ledger disabled for the store
        ForbiddenError: store outside the caller's scope
        NotFoundError: closeout_id / shift_id does not exist
        LockedError: the closeout has been locked by a manager
        ConflictError: lost a race creating or updating the closeout
    """
    actor_id = ctx.require_actor()
    store_id = require_id("store_id", store_id)
    business_date = require_date(business_date)
    figures = _validate_figures({
        "cash_sales_cents": require_cents("cash_sales_cents", cash_sales_cents),
        "card_sales_cents": card_sales_cents or 0,
        "other_sales_cents": other_sales_cents or 0,
        "actual_deposit_cents": require_cents("actual_deposit_cents", actual_deposit_cents),
        "drawer_count_cents": drawer_count_cents,
        "denominations": denominations if denominations is not None else {},
        "deposit_override_reason": deposit_override_reason,
    })
    new_expenses = _validate_expenses(expenses)
    if shift_id is not None:
        shift_id = require_id("shift_id", shift_id)
    if closeout_id is not None:
        closeout_id = require_id("closeout_id", closeout_id)
    historical_backfill = bool(historical_backfill)

    ctx.require_store(store_id)

    session = ctx.session
    settings = get_store_settings(store_id, session=session)
    if not settings.ledger_enabled and not historical_backfill:
        raise ValidationError("Safe ledger is not enabled for this store")
    _check_shift(session, shift_id, store_id)

    with atomic(session, operation="submit closeout"):
        closeout = _load_or_create(
            ctx,
            store_id=store_id,
            business_date=business_date,
            closeout_id=closeout_id,
            is_historical_backfill=historical_backfill,
        )
        if closeout.is_locked:
            raise LockedError(f"Closeout {closeout.id} is locked")
        if historical_backfill and not closeout.is_historical_backfill and closeout.validation_attempts:
            raise ValidationError(f"Closeout {closeout.id} was submitted live and cannot be backfilled")

        # A live submission makes the record live
        closeout.is_historical_backfill = historical_backfill

        _replace_expenses(ctx, closeout, new_expenses)
        graded = grade_closeout(
            cash_sales_cents=figures["cash_sales_cents"],
            expenses=closeout.expenses,
            actual_deposit_cents=figures["actual_deposit_cents"],
            denominations=figures["denominations"],
            deposit_tolerance_cents=settings.deposit_tolerance_cents,
            warn_requires_review=settings.warn_requires_review,
            historical_backfill=historical_backfill,
        )

        closeout.cash_sales_cents = figures["cash_sales_cents"]
        closeout.card_sales_cents = figures["card_sales_cents"]
        closeout.other_sales_cents = figures["other_sales_cents"]
        closeout.actual_deposit_cents = figures["actual_deposit_cents"]
        closeout.drawer_count_cents = figures["drawer_count_cents"]
        closeout.denominations = figures["denominations"]
        closeout.deposit_override_reason = figures["deposit_override_reason"]
        if shift_id is not None:
            closeout.shift_id = shift_id

        _apply_grade(closeout, graded)
        closeout.status = graded.status
        closeout.requires_manager_review = graded.requires_manager_review
        closeout.validation_attempts = (closeout.validation_attempts or 0) + 1

        if historical_backfill:
            closeout.edited_at = ctx.now()
            closeout.edited_by = actor_id

        session.flush()

    logger.info(
        "Closeout %s for store %s on %s graded %s (variance %s, denom variance %s, attempt %s, review %s)",
        closeout.id, store_id, business_date.isoformat(), graded.status, graded.variance_cents,
        graded.denom_variance_cents, closeout.validation_attempts, graded.requires_manager_review,
    )
    return closeout


def save_closeout_draft(
    ctx,
    *,
    store_id: int,
    business_date,
    cash_sales_cents: int | None = None,
    card_sales_cents: int | None = None,
    other_sales_cents: int | None = None,
    actual_deposit_cents: int | None = None,
    drawer_count_cents: int | None = None,
    denominations: dict | None = None,
    expenses: list | None = None,
    shift_id: int | None = None,
) -> SafeCloseout:
    """
    Save work in progress without grading it.

    Only the given figures change. The closeout goes back to draft with
    no review request until it is submitted again; validation_attempts and
    the derived figures from the last grading are left as they are.

    Raises:
        ValidationError: bad input, or safe ledger disabled for the store
        ForbiddenError: store outside the caller's scope
        LockedError: the closeout has been locked by a manager
    """
    ctx.require_actor()
    store_id = require_id("store_id", store_id)
    business_date = require_date(business_date)
    changes = _validate_figures({
        "cash_sales_cents": cash_sales_cents,
        "card_sales_cents": card_sales_cents,
        "other_sales_cents": other_sales_cents,
        "actual_deposit_cents": actual_deposit_cents,
        "denominations": denominations,
    })
    if drawer_count_cents is not None:
        changes["drawer_count_cents"] = require_cents("drawer_count_cents", drawer_count_cents)
    new_expenses = _validate_expenses(expenses)
    if shift_id is not None:
        shift_id = require_id("shift_id", shift_id)

    ctx.require_store(store_id)

    session = ctx.session
    settings = get_store_settings(store_id, session=session)
    if not settings.ledger_enabled:
        raise ValidationError("Safe ledger is not enabled for this store")
    _check_shift(session, shift_id, store_id)

    with atomic(session, operation="save closeout draft"):
        closeout = _load_or_create(ctx, store_id=store_id, business_date=business_date, closeout_id=None)
        if closeout.is_locked:
            raise LockedError(f"Closeout {closeout.id} is locked")

        for name, value in changes.items():
            setattr(closeout, name, value)
        if shift_id is not None:
            closeout.shift_id = shift_id
        _replace_expenses(ctx, closeout, new_expenses)

        closeout.status = CLOSEOUT_STATUS_DRAFT
        closeout.requires_manager_review = False
        session.flush()

    logger.info("Closeout %s for store %s on %s saved as draft", closeout.id, store_id, business_date.isoformat())
    return closeout


# =============================================================================
# MANAGER ACTIONS
# =============================================================================

def lock_closeout(ctx, closeout_id: int, *, override_reason: str | None = None) -> SafeCloseout:
    """
    Manager review: lock the closeout.

    Only closeouts that need review (requires_manager_review, or a status
    other than pass) can be locked directly. A clean pass needs an explicit
    override_reason, which is recorded as an edit.

    Raises:
        NotFoundError: unknown closeout
        ForbiddenError: store outside the caller's scope
        AlreadyLockedError: someone else locked it first
        ValidationError: closeout is still a draft
        ReviewNotRequiredError: clean pass without override_reason
    """
    actor_id = ctx.require_actor()
    closeout_id = require_id("closeout_id", closeout_id)
    override_reason = clean_text("override_reason", override_reason)

    session = ctx.session
    with atomic(session, operation="lock closeout"):
        closeout = _load_for_update(session, closeout_id)
        ctx.require_store(closeout.store_id)

        if closeout.is_locked:
            raise AlreadyLockedError(f"Closeout {closeout.id} is already locked")
        if closeout.status == CLOSEOUT_STATUS_DRAFT:
            raise ValidationError("Cannot lock a closeout that has not been submitted")

        needs_review = closeout.requires_manager_review or closeout.status != CLOSEOUT_STATUS_PASS
        if not needs_review:
            if override_reason is None:
                raise ReviewNotRequiredError(
                    f"Closeout {closeout.id} passed cleanly; locking it requires an override reason"
                )
            closeout.edited_at = ctx.now()
            closeout.edited_by = actor_id
            closeout.edit_reason = override_reason

        closeout.status = CLOSEOUT_STATUS_LOCKED
        closeout.requires_manager_review = False
        closeout.reviewed_at = ctx.now()
        closeout.reviewed_by = actor_id
        session.flush()

    logger.info("Closeout %s locked by user %s%s", closeout_id, actor_id, " (override)" if override_reason else "")
    return closeout


def override_closeout(
    ctx,
    closeout_id: int,
    reason: str,
    *,
    expenses: list | None = None,
    **figures,
) -> SafeCloseout:
    """
    Manager edit of a closeout's figures.

    The explicit path for correcting a closeout, including a locked one.
    Derived figures are recomputed and the edit is stamped with
    edited_at / edited_by / edit_reason. validation_attempts is untouched,
    and a locked closeout stays locked.
    An expense list, when given, replaces the closeout's lines.

    Accepted figures: cash_sales_cents, card_sales_cents, other_sales_cents,
    actual_deposit_cents, drawer_count_cents, denominations,
    deposit_override_reason.
    """
    actor_id = ctx.require_actor()
    closeout_id = require_id("closeout_id", closeout_id)
    reason = clean_text("reason", reason, required=True)

    allowed = {
        "cash_sales_cents", "card_sales_cents", "other_sales_cents", "actual_deposit_cents",
        "drawer_count_cents", "denominations", "deposit_override_reason",
    }
    unknown = set(figures) - allowed
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")
    changes = _validate_figures(figures)
    new_expenses = _validate_expenses(expenses)

    session = ctx.session
    with atomic(session, operation="override closeout"):
        closeout = _load_for_update(session, closeout_id)
        ctx.require_store(closeout.store_id)
        settings = get_store_settings(closeout.store_id, session=session)

        for name, value in changes.items():
            setattr(closeout, name, value)
        _replace_expenses(ctx, closeout, new_expenses)

        graded = grade_closeout(
            cash_sales_cents=closeout.cash_sales_cents,
            expenses=closeout.expenses,
            actual_deposit_cents=closeout.actual_deposit_cents,
            denominations=closeout.denominations or {},
            deposit_tolerance_cents=settings.deposit_tolerance_cents,
            warn_requires_review=settings.warn_requires_review,
            historical_backfill=closeout.is_historical_backfill,
        )
        _apply_grade(closeout, graded)
        if not closeout.is_locked:
            closeout.status = graded.status
            closeout.requires_manager_review = graded.requires_manager_review

        closeout.edited_at = ctx.now()
        closeout.edited_by = actor_id
        closeout.edit_reason = reason
        session.flush()

    logger.info("Closeout %s overridden by user %s; status %s", closeout_id, actor_id, closeout.status)
    return closeout


# =============================================================================
# QUERIES
# =============================================================================

def get_closeout(ctx, closeout_id: int) -> SafeCloseout:
    ctx.require_actor()
    closeout_id = require_id("closeout_id", closeout_id)

    closeout = ctx.session.get(SafeCloseout, closeout_id)
    if closeout is None:
        raise NotFoundError(f"Closeout {closeout_id} not found")
    ctx.require_store(closeout.store_id)
    return closeout


def get_closeout_summary(ctx, closeout_id: int) -> dict:
    """Closeout with its expense lines and photos."""
    closeout = get_closeout(ctx, closeout_id)
    return {
        **closeout.to_dict(),
        "expense_total_cents": closeout.expense_total_cents,
        "expenses": [expense.to_dict() for expense in closeout.expenses],
        "photos": [photo.to_dict() for photo in closeout.photos],
    }


def list_closeouts(
    ctx,
    *,
    store_ids=None,
    start_date=None,
    end_date=None,
    status: str | None = None,
) -> list[SafeCloseout]:
    ctx.require_actor()
    scope = ctx.scoped_store_ids(store_ids)

    query = ctx.session.query(SafeCloseout)
    if scope is not None:
        if not scope:
            return []
        query = query.filter(SafeCloseout.store_id.in_(scope))
    if start_date is not None:
        query = query.filter(SafeCloseout.business_date >= require_date(start_date, "start_date"))
    if end_date is not None:
        query = query.filter(SafeCloseout.business_date <= require_date(end_date, "end_date"))
    if status is not None:
        query = query.filter(SafeCloseout.status == require_choice("status", status, CLOSEOUT_STATUSES))

    return query.order_by(SafeCloseout.business_date.desc(), SafeCloseout.id.desc()).all()


def list_review_queue(ctx, store_ids=None) -> list[SafeCloseout]:
    """Unlocked closeouts waiting for a manager, newest business date first."""
    ctx.require_actor()
    scope = ctx.scoped_store_ids(store_ids)

    query = ctx.session.query(SafeCloseout).filter(
        SafeCloseout.requires_manager_review.is_(True),
        SafeCloseout.status != CLOSEOUT_STATUS_LOCKED,
    )
    if scope is not None:
        if not scope:
            return []
        query = query.filter(SafeCloseout.store_id.in_(scope))

    return query.order_by(SafeCloseout.business_date.desc(), SafeCloseout.id.desc()).all()
