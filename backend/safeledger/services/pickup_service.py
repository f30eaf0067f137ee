"""
Safe pickups and the running store safe balance.

WHY: Closeout cash stays in the store safe until an owner or manager
collects it. Recording each pickup keeps the safe's running balance
honest:

    balance through D = sum(closeout cash sales, business date <= D)
                      - sum(their expense lines)
                      - sum(pickups, pickup date <= D)

Every closeout for the store counts, whatever its status. Pickups for one
store are serialized on the store row, so two pickups cannot both take the
same "full safe" amount.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func

from ..models import SafeCloseout, SafeCloseoutExpense, SafePickup, Store
from ..validation import NotFoundError, UnauthorizedError, clean_text, require_cents, require_date, require_id
from .concurrency import atomic, lock_for_update

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PickupResult:
    pickup: SafePickup
    balance_before_cents: int
    balance_after_cents: int
    suggested_full_pickup_cents: int


def _balance_through(session, store_id: int, through_date) -> int:
    cash_sales = (
        session.query(func.coalesce(func.sum(SafeCloseout.cash_sales_cents), 0))
        .filter(SafeCloseout.store_id == store_id, SafeCloseout.business_date <= through_date)
        .scalar()
    )
    expenses = (
        session.query(func.coalesce(func.sum(SafeCloseoutExpense.amount_cents), 0))
        .join(SafeCloseout, SafeCloseoutExpense.closeout_id == SafeCloseout.id)
        .filter(SafeCloseout.store_id == store_id, SafeCloseout.business_date <= through_date)
        .scalar()
    )
    pickups = (
        session.query(func.coalesce(func.sum(SafePickup.amount_cents), 0))
        .filter(SafePickup.store_id == store_id, SafePickup.pickup_date <= through_date)
        .scalar()
    )
    return int(cash_sales) - int(expenses) - int(pickups)


def get_safe_balance(ctx, store_id: int, through_date=None) -> int:
    """Running safe balance in cents through through_date (default: today). May be negative."""
    ctx.require_actor()
    store_id = require_id("store_id", store_id)
    through_date = require_date(through_date, "through_date") if through_date is not None else ctx.now().date()
    ctx.require_store(store_id)

    return _balance_through(ctx.session, store_id, through_date)


def record_pickup(
    ctx,
    *,
    store_id: int,
    amount_cents: int | None = None,
    pickup_date=None,
    note: str | None = None,
) -> PickupResult:
    """
    Record cash taken out of the safe.

    amount_cents defaults to a full pickup: the current balance, floored at
    zero. pickup_date defaults to today.

    Raises:
        ValidationError: bad amount, date or note
        ForbiddenError: store outside the caller's scope
        UnauthorizedError: no user to attribute the pickup to
        NotFoundError: unknown store
    """
    actor_id = ctx.require_actor()
    if actor_id is None:
        raise UnauthorizedError("A safe pickup must be recorded by a user")
    store_id = require_id("store_id", store_id)
    if amount_cents is not None:
        amount_cents = require_cents("amount_cents", amount_cents)
    pickup_date = require_date(pickup_date, "pickup_date") if pickup_date is not None else ctx.now().date()
    note = clean_text("note", note)
    ctx.require_store(store_id)

    session = ctx.session
    with atomic(session, operation="record safe pickup"):
        store = lock_for_update(session.query(Store).filter_by(id=store_id)).first()
        if store is None:
            raise NotFoundError(f"Store {store_id} not found")

        balance = _balance_through(session, store_id, pickup_date)
        suggested = max(0, balance)
        if amount_cents is None:
            amount_cents = suggested

        pickup = SafePickup(
            store_id=store_id,
            pickup_date=pickup_date,
            pickup_at=ctx.now(),
            amount_cents=amount_cents,
            note=note,
            recorded_by=actor_id,
        )
        session.add(pickup)
        session.flush()

    logger.info(
        "Safe pickup %s for store %s on %s: %s cents (balance %s -> %s)",
        pickup.id, store_id, pickup_date.isoformat(), amount_cents, balance, balance - amount_cents,
    )
    return PickupResult(
        pickup=pickup,
        balance_before_cents=balance,
        balance_after_cents=balance - amount_cents,
        suggested_full_pickup_cents=suggested,
    )


def list_pickups(ctx, store_id: int, *, start_date=None, end_date=None) -> list[SafePickup]:
    ctx.require_actor()
    store_id = require_id("store_id", store_id)
    ctx.require_store(store_id)

    query = ctx.session.query(SafePickup).filter(SafePickup.store_id == store_id)
    if start_date is not None:
        query = query.filter(SafePickup.pickup_date >= require_date(start_date, "start_date"))
    if end_date is not None:
        query = query.filter(SafePickup.pickup_date <= require_date(end_date, "end_date"))
    return query.order_by(SafePickup.pickup_date.desc(), SafePickup.id.desc()).all()
