"""
Closeout photo evidence and its scheduled purge.

Each photo is kept for the store's retention window (purge_after =
attached time + photo_retention_days). Once a month, on the store's
purge day, the sweep removes every photo whose window has elapsed: the
row first, then the backing objects.

The sweep is idempotent: purged rows are gone, so a second run on the same
day finds nothing.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from ..models import SafeCloseout, SafeCloseoutPhoto, StoreReconciliationSettings, Store
from ..models.closeouts import PHOTO_TYPES
from ..validation import (
    LockedError,
    NotFoundError,
    ValidationError,
    clean_text,
    coerce_int,
    require_choice,
    require_id,
)
from .concurrency import atomic
from .settings_service import DEFAULT_SETTINGS, get_store_settings

logger = logging.getLogger(__name__)

MAX_STORAGE_PATH_LENGTH = 512


def attach_photo(
    ctx,
    closeout_id: int,
    photo_type: str,
    storage_path: str,
    *,
    thumb_path: str | None = None,
    retention_days: int | None = None,
) -> SafeCloseoutPhoto:
    """
    Attach a stored photo to a closeout.

    Args:
        retention_days: Defaults to the store's photo_retention_days

    Raises:
        ValidationError: bad input
        NotFoundError: unknown closeout
        ForbiddenError: closeout's store outside the caller's scope
        LockedError: the closeout is locked
    """
    actor_id = ctx.require_actor()
    closeout_id = require_id("closeout_id", closeout_id)
    photo_type = require_choice("photo_type", photo_type, PHOTO_TYPES)
    storage_path = clean_text("storage_path", storage_path, required=True, max_length=MAX_STORAGE_PATH_LENGTH)
    thumb_path = clean_text("thumb_path", thumb_path, max_length=MAX_STORAGE_PATH_LENGTH)
    if retention_days is not None:
        retention_days = coerce_int("retention_days", retention_days)
        if retention_days < 0:
            raise ValidationError("retention_days must be >= 0")

    session = ctx.session
    with atomic(session, operation="attach photo"):
        closeout = session.get(SafeCloseout, closeout_id)
        if closeout is None:
            raise NotFoundError(f"Closeout {closeout_id} not found")
        ctx.require_store(closeout.store_id)
        if closeout.is_locked:
            raise LockedError(f"Closeout {closeout_id} is locked")

        if retention_days is None:
            retention_days = get_store_settings(closeout.store_id, session=session).photo_retention_days

        now = ctx.now()
        photo = SafeCloseoutPhoto(
            closeout_id=closeout.id,
            photo_type=photo_type,
            storage_path=storage_path,
            thumb_path=thumb_path,
            purge_after=now + timedelta(days=retention_days),
            created_by=actor_id,
            created_at=now,
        )
        session.add(photo)
        session.flush()

    logger.info("Photo %s (%s) attached to closeout %s", photo.id, photo_type, closeout_id)
    return photo


def list_photos(ctx, closeout_id: int) -> list[SafeCloseoutPhoto]:
    ctx.require_actor()
    closeout_id = require_id("closeout_id", closeout_id)

    closeout = ctx.session.get(SafeCloseout, closeout_id)
    if closeout is None:
        raise NotFoundError(f"Closeout {closeout_id} not found")
    ctx.require_store(closeout.store_id)

    return (
        ctx.session.query(SafeCloseoutPhoto)
        .filter_by(closeout_id=closeout_id)
        .order_by(SafeCloseoutPhoto.id.asc())
        .all()
    )


def sweep_expired_photos(
    ctx,
    *,
    purge_day_of_month: int,
    now: datetime | None = None,
    store_ids=None,
) -> int:
    """
    Purge photos whose retention window has elapsed.

    Runs only when now's day of month equals purge_day_of_month; on any
    other day it returns 0 without touching anything.

    Rows are deleted and committed before their backing objects; an object
    that outlives its row is harmless, a row pointing at a deleted object
    is not.

    Returns:
        Number of photo rows purged
    """
    ctx.require_actor()
    purge_day_of_month = coerce_int("purge_day_of_month", purge_day_of_month)
    if not 1 <= purge_day_of_month <= 28:
        raise ValidationError("purge_day_of_month must be between 1 and 28")
    now = now or ctx.now()
    scope = ctx.scoped_store_ids(store_ids)

    if now.day != purge_day_of_month:
        return 0

    session = ctx.session
    query = session.query(SafeCloseoutPhoto).filter(SafeCloseoutPhoto.purge_after <= now)
    if scope is not None:
        if not scope:
            return 0
        query = query.join(SafeCloseout, SafeCloseout.id == SafeCloseoutPhoto.closeout_id).filter(
            SafeCloseout.store_id.in_(scope)
        )

    with atomic(session, operation="sweep photos"):
        expired = query.all()
        paths = []
        for photo in expired:
            paths.append(photo.storage_path)
            if photo.thumb_path:
                paths.append(photo.thumb_path)
            session.delete(photo)
        session.flush()

    for path in paths:
        try:
            ctx.photo_storage.delete(path)
        except (OSError, ValueError) as exc:
            logger.warning("Could not delete photo object %s: %s", path, exc)

    if expired:
        logger.info("Purged %s expired closeout photos", len(expired))
    return len(expired)


def run_scheduled_sweep(ctx, now: datetime | None = None) -> int:
    """
    Sweep every store whose purge day is today.

    Stores without a settings row use the default purge day.
    """
    ctx.require_actor()
    now = now or ctx.now()
    session = ctx.session

    purge_days = {
        store_id: purge_day
        for store_id, purge_day in session.query(
            StoreReconciliationSettings.store_id,
            StoreReconciliationSettings.photo_purge_day_of_month,
        )
    }

    due = []
    for (store_id,) in session.query(Store.id).order_by(Store.id):
        if not ctx.can_access(store_id):
            continue
        purge_day = purge_days.get(store_id, DEFAULT_SETTINGS["photo_purge_day_of_month"])
        if purge_day == now.day:
            due.append(store_id)

    if not due:
        logger.info("No stores due for photo purge on day %s", now.day)
        return 0

    return sweep_expired_photos(ctx, purge_day_of_month=now.day, now=now, store_ids=due)
