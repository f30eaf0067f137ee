"""
Blind dual-entry rollover matching.

WHY: On rollover nights the closing staff and the next opening staff each
report the sales figure carried over, without seeing the other's number.
The day's figure is only trusted once both agree; a disagreement is saved
only after the submitter explicitly confirms it.

LIFECYCLE (per store + business date):
- EMPTY -> PENDING: first side reported
- PENDING -> MATCHED: second side reports the same amount
- PENDING -> MISMATCH_SAVED: second side differs and confirms
- MISMATCH_DETECTED is a decision returned to the caller, never persisted

CONCURRENCY: The RolloverDay row is locked for update before either side
is read, so the opener and closer serialize on it. A concurrent first
insert of the day row or of one side's entry hits a unique constraint and
surfaces as ConflictError; nothing is overwritten silently.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum

from sqlalchemy import update

from ..models import RolloverDay, RolloverEntry, Store
from ..models.rollover import (
    DAY_STATUS_MATCHED,
    DAY_STATUS_MISMATCH_SAVED,
    DAY_STATUS_PENDING,
    ROLLOVER_SOURCES,
    SOURCE_CLOSER,
    SOURCE_OPENER,
)
from ..validation import (
    LockedError,
    NotFoundError,
    ValidationError,
    clean_text,
    require_cents,
    require_choice,
    require_date,
    require_id,
)
from .concurrency import atomic, lock_for_update
from .settings_service import get_store_settings

logger = logging.getLogger(__name__)


class RolloverOutcome(str, Enum):
    MATCHED = "MATCHED"
    PENDING_SECOND_ENTRY = "PENDING_SECOND_ENTRY"
    MISMATCH_SAVED = "MISMATCH_SAVED"
    MISMATCH_DETECTED = "MISMATCH_DETECTED"


@dataclass(frozen=True)
class RolloverResult:
    outcome: RolloverOutcome
    day: RolloverDay | None = None
    entry: RolloverEntry | None = None

    @property
    def requires_confirmation(self) -> bool:
        """Caller must re-submit with force_mismatch=True to save."""
        return self.outcome is RolloverOutcome.MISMATCH_DETECTED

    def to_dict(self) -> dict:
        # Blind entry: never echo the other side's amount back
        return {
            "outcome": self.outcome.value,
            "requires_confirmation": self.requires_confirmation,
            "rollover_day_id": self.day.id if self.day is not None else None,
            "entry": self.entry.to_dict() if self.entry is not None else None,
        }


def _opposite(source: str) -> str:
    return SOURCE_OPENER if source == SOURCE_CLOSER else SOURCE_CLOSER


def _load_day_for_update(session, store_id: int, business_date: date) -> RolloverDay | None:
    return lock_for_update(
        session.query(RolloverDay).filter_by(store_id=store_id, business_date=business_date)
    ).first()


def _new_entry(ctx, day: RolloverDay, source: str, amount_cents: int, *, mismatch: bool = False) -> RolloverEntry:
    entry = RolloverEntry(
        rollover_day=day,
        store_id=day.store_id,
        business_date=day.business_date,
        source=source,
        amount_cents=amount_cents,
        mismatch=mismatch,
        submitted_by=ctx.actor_id,
        created_at=ctx.now(),
    )
    ctx.session.add(entry)
    return entry


def _carry_forward(session, store_id: int, business_date: date, amount_cents: int) -> None:
    """The agreed figure opens the next business date."""
    next_date = business_date + timedelta(days=1)
    next_day = _load_day_for_update(session, store_id, next_date)
    if next_day is None:
        next_day = RolloverDay(
            store_id=store_id,
            business_date=next_date,
            status=DAY_STATUS_PENDING,
            carried_in_cents=amount_cents,
        )
        session.add(next_day)
    else:
        next_day.carried_in_cents = amount_cents


def submit_rollover(
    ctx,
    store_id: int,
    business_date,
    amount_cents: int,
    source: str,
    force_mismatch: bool = False,
) -> RolloverResult:
    """
    Submit one side of a rollover pair.

    Returns:
        RolloverResult with one of:
        - PENDING_SECOND_ENTRY: no opposite entry yet; this side saved
          (re-submitting the same side while pending corrects its amount)
        - MATCHED: both sides agree; pair finalized
        - MISMATCH_DETECTED: sides differ; nothing saved, confirmation needed
        - MISMATCH_SAVED: sides differ and force_mismatch=True; both retained

    Raises:
        ValidationError: bad input, or rollover disabled for the store
        ForbiddenError: store outside the caller's scope
        NotFoundError: unknown store
        LockedError: the pair is already MATCHED or MISMATCH_SAVED
        ConflictError: lost a race with a concurrent submission
    """
    ctx.require_actor()
    store_id = require_id("store_id", store_id)
    business_date = require_date(business_date)
    amount_cents = require_cents("amount_cents", amount_cents)
    source = require_choice("source", source, ROLLOVER_SOURCES)
    force_mismatch = bool(force_mismatch)

    ctx.require_store(store_id)

    session = ctx.session
    if session.get(Store, store_id) is None:
        raise NotFoundError(f"Store {store_id} not found")
    if not get_store_settings(store_id, session=session).rollover_enabled:
        raise ValidationError("Rollover entry is disabled for this store")

    with atomic(session, operation="submit rollover"):
        day = _load_day_for_update(session, store_id, business_date)
        if day is None:
            day = RolloverDay(store_id=store_id, business_date=business_date, status=DAY_STATUS_PENDING)
            session.add(day)
            session.flush()

        if day.is_final:
            raise LockedError(
                f"Rollover for store {store_id} on {business_date.isoformat()} is already {day.status}"
            )

        own = day.entry_for(source)
        opposite = day.entry_for(_opposite(source))

        if opposite is None:
            if own is not None:
                own.amount_cents = amount_cents
                own.submitted_by = ctx.actor_id
                own.updated_at = ctx.now()
            else:
                own = _new_entry(ctx, day, source, amount_cents)
            day.needs_review = True
            outcome = RolloverOutcome.PENDING_SECOND_ENTRY

        elif opposite.amount_cents == amount_cents:
            own = _new_entry(ctx, day, source, amount_cents)
            day.status = DAY_STATUS_MATCHED
            day.agreed_cents = amount_cents
            day.needs_review = False
            _carry_forward(session, store_id, business_date, amount_cents)
            outcome = RolloverOutcome.MATCHED

        elif not force_mismatch:
            own = None
            outcome = RolloverOutcome.MISMATCH_DETECTED

        else:
            own = _new_entry(ctx, day, source, amount_cents, mismatch=True)
            day.status = DAY_STATUS_MISMATCH_SAVED
            day.needs_review = True
            outcome = RolloverOutcome.MISMATCH_SAVED

        session.flush()

    if outcome is RolloverOutcome.MISMATCH_SAVED:
        logger.warning(
            "Rollover mismatch saved for store %s on %s (%s side, user %s)",
            store_id, business_date.isoformat(), source, ctx.actor_id,
        )
    else:
        logger.info(
            "Rollover %s for store %s on %s (%s side)",
            outcome.value, store_id, business_date.isoformat(), source,
        )

    return RolloverResult(outcome=outcome, day=day, entry=own)


def get_rollover_day(ctx, store_id: int, business_date) -> RolloverDay | None:
    ctx.require_actor()
    store_id = require_id("store_id", store_id)
    business_date = require_date(business_date)
    ctx.require_store(store_id)

    return ctx.session.query(RolloverDay).filter_by(store_id=store_id, business_date=business_date).first()


def list_rollover_mismatches(ctx, store_ids=None) -> list[RolloverDay]:
    """Saved mismatches awaiting manager review, newest business date first."""
    ctx.require_actor()
    scope = ctx.scoped_store_ids(store_ids)

    query = ctx.session.query(RolloverDay).filter(
        RolloverDay.status == DAY_STATUS_MISMATCH_SAVED,
        RolloverDay.reviewed_at.is_(None),
    )
    if scope is not None:
        if not scope:
            return []
        query = query.filter(RolloverDay.store_id.in_(scope))

    return query.order_by(RolloverDay.business_date.desc(), RolloverDay.id.desc()).all()


def review_rollover_day(ctx, day_id: int, note: str | None = None) -> RolloverDay:
    """
    Sign off a saved mismatch. First review wins; a second attempt is NotFound.
    """
    actor_id = ctx.require_actor()
    day_id = require_id("day_id", day_id)
    note = clean_text("note", note)

    session = ctx.session
    with atomic(session, operation="review rollover"):
        day = session.get(RolloverDay, day_id)
        if day is None:
            raise NotFoundError(f"Rollover day {day_id} not found")
        ctx.require_store(day.store_id)

        result = session.execute(
            update(RolloverDay)
            .where(
                RolloverDay.id == day_id,
                RolloverDay.status == DAY_STATUS_MISMATCH_SAVED,
                RolloverDay.reviewed_at.is_(None),
            )
            .values(
                reviewed_at=ctx.now(),
                reviewed_by=actor_id,
                review_note=note,
                needs_review=False,
                version_id=RolloverDay.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Rollover day {day_id} not found")

    logger.info("Rollover day %s reviewed by user %s", day_id, actor_id)
    session.refresh(day)
    return day
