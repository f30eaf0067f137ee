"""
Call context tests: caller resolution and store scope.
"""

import pytest

from safeledger.services.context import ReconciliationContext, build_context
from safeledger.services.store_access_service import (
    get_manager_store_ids,
    grant_manager_access,
    list_manager_access,
    revoke_manager_access,
)
from safeledger.validation import ForbiddenError, NotFoundError, UnauthorizedError


class TestBuildContext:

    def test_missing_identity(self, db_session):
        with pytest.raises(UnauthorizedError):
            build_context(None, session=db_session)

    def test_unknown_user(self, db_session):
        with pytest.raises(UnauthorizedError):
            build_context(12345, session=db_session)

    def test_inactive_user(self, db_session, manager_a):
        manager_a.is_active = False
        db_session.commit()
        with pytest.raises(UnauthorizedError):
            build_context(manager_a.id, session=db_session)

    def test_primary_store_is_in_scope(self, ctx_a, store_a, store_b):
        assert ctx_a.store_ids == frozenset({store_a.id})
        ctx_a.require_store(store_a.id)
        with pytest.raises(ForbiddenError):
            ctx_a.require_store(store_b.id)

    def test_review_note_flag_from_config(self, app, db_session, manager_a):
        app.config["DRAWER_REVIEW_NOTES"] = False
        try:
            ctx = build_context(manager_a.id, session=db_session)
        finally:
            app.config["DRAWER_REVIEW_NOTES"] = True
        assert ctx.review_notes_enabled is False


class TestScope:

    def test_system_context_is_unscoped(self, system_ctx, store_a):
        assert system_ctx.require_actor() is None
        assert system_ctx.scoped_store_ids() is None
        assert system_ctx.scoped_store_ids([store_a.id]) == {store_a.id}

    def test_anonymous_non_system_context(self, db_session):
        ctx = ReconciliationContext(session=db_session, actor_id=None)
        with pytest.raises(UnauthorizedError):
            ctx.require_actor()

    def test_requested_store_outside_scope(self, ctx_a, store_b):
        with pytest.raises(ForbiddenError):
            ctx_a.scoped_store_ids([store_b.id])


class TestStoreAccess:

    def test_grant_and_revoke(self, db_session, manager_a, store_a, store_b):
        grant = grant_manager_access(user_id=manager_a.id, store_id=store_b.id, granted_by_user_id=manager_a.id)
        again = grant_manager_access(user_id=manager_a.id, store_id=store_b.id)

        assert again.id == grant.id
        assert get_manager_store_ids(manager_a.id) == {store_a.id, store_b.id}
        assert get_manager_store_ids(manager_a.id, include_primary=False) == {store_b.id}
        assert [g.store_id for g in list_manager_access(manager_a.id)] == [store_b.id]

        assert revoke_manager_access(user_id=manager_a.id, store_id=store_b.id) is True
        assert revoke_manager_access(user_id=manager_a.id, store_id=store_b.id) is False
        assert get_manager_store_ids(manager_a.id) == {store_a.id}

    def test_grant_unknown_store(self, db_session, manager_a):
        with pytest.raises(NotFoundError):
            grant_manager_access(user_id=manager_a.id, store_id=9999)

    def test_area_manager_context(self, make_ctx, area_manager, store_a, store_b):
        ctx = make_ctx(area_manager)
        assert ctx.store_ids == frozenset({store_a.id, store_b.id})
