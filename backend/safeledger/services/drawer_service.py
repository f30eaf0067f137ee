"""
Drawer variance tracking at shift checkpoints.

WHY: A drawer that does not hold its expected float at start, changeover
or end of a shift is the earliest signal of a cash problem. Each count is
graded against the store's expected drawer amount; out-of-threshold counts
wait in a review queue until a manager signs them off.

DESIGN PRINCIPLES:
- Counts are never deleted or re-graded
- One count per (shift, checkpoint)
- Review is first-caller-wins: a compare-and-set on reviewed_at IS NULL
"""

from __future__ import annotations

import logging

from sqlalchemy import update

from ..models import DrawerCount, Shift, Store
from ..models.shifts import COUNT_TYPES
from ..validation import NotFoundError, ValidationError, clean_text, require_cents, require_choice, require_id
from .concurrency import atomic
from .settings_service import get_store_settings
from .tolerance import grade, validate_tolerance

logger = logging.getLogger(__name__)


def record_drawer_count(
    ctx,
    shift_id: int,
    count_type: str,
    drawer_cents: int,
    *,
    confirmed: bool = False,
    note: str | None = None,
    expected_drawer_cents: int | None = None,
    tolerance_cents: int | None = None,
) -> DrawerCount:
    """
    Record a checkpoint drawer count and grade it.

    Args:
        shift_id: Shift the count belongs to
        count_type: "start", "changeover" or "end"
        drawer_cents: Counted drawer amount
        confirmed: Employee confirmed an out-of-threshold count
        note: Optional employee note
        expected_drawer_cents: Override for the store's expected drawer amount
        tolerance_cents: Override for the store's denomination tolerance

    Raises:
        ValidationError: bad input, or this checkpoint was already counted
        NotFoundError: unknown shift
        ForbiddenError: shift belongs to a store outside the caller's scope
        ConflictError: a concurrent count for the same checkpoint won
    """
    actor_id = ctx.require_actor()
    shift_id = require_id("shift_id", shift_id)
    count_type = require_choice("count_type", count_type, COUNT_TYPES)
    drawer_cents = require_cents("drawer_cents", drawer_cents)
    expected_override = require_cents("expected_drawer_cents", expected_drawer_cents, allow_none=True)
    tolerance_override = (
        validate_tolerance(tolerance_cents, "tolerance_cents") if tolerance_cents is not None else None
    )
    note = clean_text("note", note)

    session = ctx.session
    with atomic(session, operation="record drawer count"):
        shift = session.get(Shift, shift_id)
        if shift is None:
            raise NotFoundError(f"Shift {shift_id} not found")
        ctx.require_store(shift.store_id)

        existing = session.query(DrawerCount).filter_by(shift_id=shift.id, count_type=count_type).first()
        if existing is not None:
            raise ValidationError(f"A {count_type} count was already recorded for shift {shift.id}")

        if expected_override is not None:
            expected = expected_override
        else:
            expected = session.get(Store, shift.store_id).expected_drawer_cents

        if tolerance_override is not None:
            tolerance = tolerance_override
        else:
            tolerance = get_store_settings(shift.store_id, session=session).denom_tolerance_cents

        result = grade(expected, drawer_cents, tolerance)

        count = DrawerCount(
            shift_id=shift.id,
            store_id=shift.store_id,
            count_type=count_type,
            counted_at=ctx.now(),
            drawer_cents=drawer_cents,
            expected_drawer_cents=expected,
            variance_cents=result.variance_cents,
            confirmed=bool(confirmed),
            out_of_threshold=result.out_of_threshold,
            notified_manager=result.out_of_threshold,
            note=note,
        )
        session.add(count)
        session.flush()

    if count.out_of_threshold:
        logger.warning(
            "Drawer count %s (shift %s, %s) out of threshold: variance %s cents, tolerance %s, by user %s",
            count.id, shift_id, count_type, result.variance_cents, tolerance, actor_id,
        )
    else:
        logger.info("Drawer count %s (shift %s, %s) within threshold", count.id, shift_id, count_type)

    return count


def list_unreviewed_variances(ctx, store_ids=None) -> list[DrawerCount]:
    """Out-of-threshold counts nobody has reviewed yet, most recent first."""
    ctx.require_actor()
    scope = ctx.scoped_store_ids(store_ids)

    query = ctx.session.query(DrawerCount).filter(
        DrawerCount.out_of_threshold.is_(True),
        DrawerCount.reviewed_at.is_(None),
    )
    if scope is not None:
        if not scope:
            return []
        query = query.filter(DrawerCount.store_id.in_(scope))

    return query.order_by(DrawerCount.counted_at.desc(), DrawerCount.id.desc()).all()


def review_drawer_count(ctx, count_id: int, note: str | None = None) -> DrawerCount:
    """
    Mark a drawer count reviewed.

    Only the first review lands. Once reviewed_at is set the row drops out
    of the filtered update and later attempts raise NotFoundError, so
    reviewed_by is never overwritten.

    The note is kept only when the review-note schema capability is enabled.
    """
    actor_id = ctx.require_actor()
    count_id = require_id("count_id", count_id)
    note = clean_text("note", note)

    session = ctx.session
    with atomic(session, operation="review drawer count"):
        count = session.get(DrawerCount, count_id)
        if count is None:
            raise NotFoundError(f"Drawer count {count_id} not found")
        ctx.require_store(count.store_id)

        values = {"reviewed_at": ctx.now(), "reviewed_by": actor_id}
        if note is not None and ctx.review_notes_enabled:
            values["review_note"] = note

        result = session.execute(
            update(DrawerCount)
            .where(DrawerCount.id == count_id, DrawerCount.reviewed_at.is_(None))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Drawer count {count_id} not found")

    if note is not None and not ctx.review_notes_enabled:
        logger.info("Review note for drawer count %s dropped: review notes disabled", count_id)
    logger.info("Drawer count %s reviewed by user %s", count_id, actor_id)

    session.refresh(count)
    return count
