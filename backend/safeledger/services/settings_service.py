"""
Store reconciliation settings.

WHY: Thresholds are per store and owned by store configuration. The engine
reads them on every operation; only the admin CLI writes them.

A store without a settings row behaves as if it had the defaults below.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Store, StoreReconciliationSettings
from ..validation import NotFoundError, ValidationError, coerce_int
from .concurrency import atomic, lock_for_update

logger = logging.getLogger(__name__)


DEFAULT_SETTINGS = {
    "ledger_enabled": False,
    "deposit_tolerance_cents": 100,
    "denom_tolerance_cents": 0,
    "photo_retention_days": 38,
    "photo_purge_day_of_month": 8,
    "rollover_enabled": True,
    "warn_requires_review": True,
}

_BOOL_FIELDS = {"ledger_enabled", "rollover_enabled", "warn_requires_review"}
_NON_NEGATIVE_FIELDS = {"deposit_tolerance_cents", "denom_tolerance_cents", "photo_retention_days"}


def get_store_settings(store_id: int, *, session=None) -> StoreReconciliationSettings:
    """
    Settings for a store; an unsaved row carrying defaults when none exists.
    """
    session = session or db.session
    settings = session.query(StoreReconciliationSettings).filter_by(store_id=store_id).first()
    if settings is not None:
        return settings
    return StoreReconciliationSettings(store_id=store_id, **DEFAULT_SETTINGS)


def validate_settings_patch(changes: dict) -> dict:
    patch = {}
    for key, raw in changes.items():
        if key not in DEFAULT_SETTINGS:
            raise ValidationError(f"Unknown setting: {key}")

        if key in _BOOL_FIELDS:
            if not isinstance(raw, bool):
                raise ValidationError(f"{key} must be a boolean")
            patch[key] = raw
            continue

        value = coerce_int(key, raw)
        if key in _NON_NEGATIVE_FIELDS and value < 0:
            raise ValidationError(f"{key} must be >= 0")
        if key == "photo_purge_day_of_month" and not 1 <= value <= 28:
            raise ValidationError("photo_purge_day_of_month must be between 1 and 28")
        patch[key] = value

    return patch


def update_store_settings(store_id: int, *, session=None, **changes) -> StoreReconciliationSettings:
    """
    Create or update a store's settings row.

    Raises:
        NotFoundError: unknown store
        ValidationError: invalid value
        ConflictError: concurrent update of the same row
    """
    session = session or db.session
    patch = validate_settings_patch(changes)

    with atomic(session, operation="update store settings"):
        if session.get(Store, store_id) is None:
            raise NotFoundError(f"Store {store_id} not found")

        settings = lock_for_update(
            session.query(StoreReconciliationSettings).filter_by(store_id=store_id)
        ).first()
        if settings is None:
            settings = StoreReconciliationSettings(store_id=store_id, **DEFAULT_SETTINGS)
            session.add(settings)

        for key, value in patch.items():
            setattr(settings, key, value)

    logger.info("Store %s reconciliation settings updated: %s", store_id, sorted(patch))
    return settings
