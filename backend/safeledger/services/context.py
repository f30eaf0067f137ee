"""
Call context for reconciliation engine operations.

WHY: Every engine call runs on behalf of one caller against one database
session. Instead of reaching for module-level handles, callers build a
ReconciliationContext once per request (or per scheduled job) and pass it
into each operation.

The context carries:
- session: SQLAlchemy session the operation commits through
- actor_id / store_ids: resolved caller identity and authorized stores
- clock: source of "now" (injectable for tests and backfills)
- photo_storage: where closeout photo objects live
- review_notes_enabled: drawer_counts.review_note schema capability
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

from flask import current_app

from ..extensions import db
from ..models import User
from ..storage import LocalPhotoStorage, PhotoStorage
from ..time_utils import utcnow
from ..validation import ForbiddenError, UnauthorizedError
from .store_access_service import get_manager_store_ids


@dataclass
class ReconciliationContext:
    session: object
    actor_id: Optional[int]
    store_ids: frozenset = field(default_factory=frozenset)
    photo_storage: Optional[PhotoStorage] = None
    clock: Callable[[], datetime] = utcnow
    review_notes_enabled: bool = True
    is_system: bool = False

    def now(self) -> datetime:
        return self.clock()

    def require_actor(self) -> Optional[int]:
        """Actor id for attribution. System jobs act anonymously."""
        if self.actor_id is None and not self.is_system:
            raise UnauthorizedError("Authentication required")
        return self.actor_id

    def can_access(self, store_id: int) -> bool:
        return self.is_system or store_id in self.store_ids

    def require_store(self, store_id: int) -> None:
        if not self.can_access(store_id):
            raise ForbiddenError(f"You do not have access to store {store_id}")

    def scoped_store_ids(self, requested: Iterable[int] | None = None) -> Optional[set[int]]:
        """
        Store filter for cross-store reads.

        None means "no filter" (system context without an explicit request).
        Requesting a store outside the authorized set is Forbidden.
        """
        if requested is None:
            return None if self.is_system else set(self.store_ids)

        wanted = set(requested)
        for store_id in wanted:
            self.require_store(store_id)
        return wanted


def _default_photo_storage() -> PhotoStorage:
    return LocalPhotoStorage(current_app.config["PHOTO_STORAGE_ROOT"])


def build_context(
    user_id: Optional[int],
    *,
    session=None,
    clock: Callable[[], datetime] | None = None,
    photo_storage: PhotoStorage | None = None,
) -> ReconciliationContext:
    """
    Resolve the caller into a context.

    Raises:
        UnauthorizedError: no identity, unknown user, or deactivated user
    """
    session = session or db.session

    if user_id is None:
        raise UnauthorizedError("Authentication required")

    user = session.get(User, user_id)
    if user is None or not user.is_active:
        raise UnauthorizedError("Invalid or inactive user")

    store_ids = frozenset(get_manager_store_ids(user.id, include_primary=True, session=session))

    return ReconciliationContext(
        session=session,
        actor_id=user.id,
        store_ids=store_ids,
        photo_storage=photo_storage or _default_photo_storage(),
        clock=clock or utcnow,
        review_notes_enabled=bool(current_app.config.get("DRAWER_REVIEW_NOTES", True)),
    )


def build_system_context(
    *,
    session=None,
    clock: Callable[[], datetime] | None = None,
    photo_storage: PhotoStorage | None = None,
) -> ReconciliationContext:
    """Context for scheduled jobs (evidence sweep): every store, no actor."""
    return ReconciliationContext(
        session=session or db.session,
        actor_id=None,
        photo_storage=photo_storage or _default_photo_storage(),
        clock=clock or utcnow,
        review_notes_enabled=bool(current_app.config.get("DRAWER_REVIEW_NOTES", True)),
        is_system=True,
    )
