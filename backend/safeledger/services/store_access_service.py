"""
Which stores a user may reconcile.

A user's primary store (User.store_id) is implicit scope. Managers who
oversee more stores hold one UserStoreManagerAccess grant per extra store;
the union is the authorized store set every engine call is checked against.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import User, Store, UserStoreManagerAccess
from ..validation import NotFoundError, require_id
from .concurrency import atomic

logger = logging.getLogger(__name__)


def get_manager_store_ids(user_id: int, *, include_primary: bool = True, session=None) -> set[int]:
    """
    Get store IDs where the user has managerial access.

    include_primary includes User.store_id as implicit managerial scope.
    """
    session = session or db.session
    rows = session.query(UserStoreManagerAccess.store_id).filter_by(user_id=user_id).all()
    store_ids = {row[0] for row in rows}

    if include_primary:
        user = session.get(User, user_id)
        if user and user.store_id is not None:
            store_ids.add(user.store_id)

    return store_ids


def list_manager_access(user_id: int, *, session=None) -> list[UserStoreManagerAccess]:
    session = session or db.session
    return (
        session.query(UserStoreManagerAccess)
        .filter_by(user_id=user_id)
        .order_by(UserStoreManagerAccess.store_id.asc())
        .all()
    )


def grant_manager_access(
    *,
    user_id: int,
    store_id: int,
    granted_by_user_id: int | None = None,
    session=None,
) -> UserStoreManagerAccess:
    """
    Grant oversight of a store. Granting an existing grant returns it unchanged.

    Raises:
        NotFoundError: unknown user or store
        ConflictError: a concurrent grant for the same pair won
    """
    session = session or db.session
    user_id = require_id("user_id", user_id)
    store_id = require_id("store_id", store_id)

    with atomic(session, operation="grant store access"):
        if session.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found")
        if session.get(Store, store_id) is None:
            raise NotFoundError(f"Store {store_id} not found")

        access = session.query(UserStoreManagerAccess).filter_by(user_id=user_id, store_id=store_id).first()
        if access is not None:
            return access

        access = UserStoreManagerAccess(
            user_id=user_id,
            store_id=store_id,
            granted_by_user_id=granted_by_user_id,
        )
        session.add(access)

    logger.info("User %s granted access to store %s (by %s)", user_id, store_id, granted_by_user_id)
    return access


def revoke_manager_access(*, user_id: int, store_id: int, session=None) -> bool:
    """Remove a grant. Returns False when there was nothing to revoke."""
    session = session or db.session

    with atomic(session, operation="revoke store access"):
        access = session.query(UserStoreManagerAccess).filter_by(user_id=user_id, store_id=store_id).first()
        if access is None:
            return False
        session.delete(access)

    logger.info("User %s access to store %s revoked", user_id, store_id)
    return True
