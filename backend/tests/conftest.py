"""
Pytest fixtures for safeledger backend tests.

Provides the in-memory database, stores/users with store scope, and a
reconciliation context with a controllable clock and photo storage.
"""

from datetime import datetime, timedelta

import pytest

from safeledger import create_app
from safeledger.extensions import db
from safeledger.models import Shift, Store, User, UserStoreManagerAccess
from safeledger.services.context import build_context, build_system_context
from safeledger.services.settings_service import update_store_settings


class FixedClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now):
        self.current = now

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)
        return self.current


class RecordingPhotoStorage:
    """Photo storage that remembers what it was asked to delete."""

    def __init__(self):
        self.deleted = []

    def delete(self, path):
        self.deleted.append(path)


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PHOTO_STORAGE_ROOT': str(tmp_path_factory.mktemp('photos')),
        'DRAWER_REVIEW_NOTES': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.remove()


@pytest.fixture(scope='function')
def store_a(db_session):
    store = Store(name="Store A", code="A1", expected_drawer_cents=20000)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session):
    store = Store(name="Store B", code="B1", expected_drawer_cents=15000)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def manager_a(db_session, store_a):
    """Manager whose primary store is Store A."""
    user = User(username="manager_a", display_name="Manager A", store_id=store_a.id)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def clerk_a(db_session, store_a):
    user = User(username="clerk_a", display_name="Clerk A", store_id=store_a.id)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def manager_b(db_session, store_b):
    """Manager of Store B only."""
    user = User(username="manager_b", display_name="Manager B", store_id=store_b.id)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def area_manager(db_session, store_a, store_b):
    """No primary store; granted oversight of both stores."""
    user = User(username="area_manager", display_name="Area Manager")
    db_session.add(user)
    db_session.flush()
    db_session.add(UserStoreManagerAccess(user_id=user.id, store_id=store_a.id))
    db_session.add(UserStoreManagerAccess(user_id=user.id, store_id=store_b.id))
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def shift_a(db_session, store_a, clerk_a):
    shift = Shift(store_id=store_a.id, user_id=clerk_a.id, started_at=datetime(2026, 3, 7, 8, 0, 0))
    db_session.add(shift)
    db_session.commit()
    return shift


@pytest.fixture(scope='function')
def ledger_store_a(db_session, store_a):
    """Store A with the safe ledger switched on."""
    update_store_settings(store_a.id, session=db_session, ledger_enabled=True)
    return store_a


@pytest.fixture(scope='function')
def clock():
    return FixedClock(datetime(2026, 3, 7, 22, 0, 0))


@pytest.fixture(scope='function')
def photo_storage():
    return RecordingPhotoStorage()


@pytest.fixture(scope='function')
def make_ctx(db_session, clock, photo_storage):
    """Build a context for any user, sharing the test clock and storage."""
    def _make(user):
        return build_context(user.id, session=db_session, clock=clock, photo_storage=photo_storage)
    return _make


@pytest.fixture(scope='function')
def ctx_a(make_ctx, manager_a):
    return make_ctx(manager_a)


@pytest.fixture(scope='function')
def ctx_b(make_ctx, manager_b):
    return make_ctx(manager_b)


@pytest.fixture(scope='function')
def system_ctx(db_session, clock, photo_storage):
    return build_system_context(session=db_session, clock=clock, photo_storage=photo_storage)
