# Overview: Transaction boundaries for engine operations; maps storage failures onto engine errors.

from __future__ import annotations

import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..validation import ConflictError, PersistenceError

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    populate_existing() refreshes rows already in the identity map so the
    caller sees the locked version, not a stale one.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update().populate_existing()


@contextmanager
def atomic(session, *, operation: str):
    """
    Run one engine operation as a single transaction.

    Commits on success. A unique-constraint or version-check failure means a
    concurrent writer won: roll back and raise ConflictError. Other storage
    failures become PersistenceError. Engine errors raised inside the block
    roll back and propagate unchanged. Nothing is retried here; the caller
    decides.
    """
    try:
        yield
        session.commit()
    except (IntegrityError, StaleDataError) as exc:
        session.rollback()
        logger.warning("%s lost a concurrent write: %s", operation, exc.__class__.__name__)
        raise ConflictError(f"{operation} conflicted with a concurrent update; retry the operation") from exc
    except OperationalError as exc:
        session.rollback()
        logger.error("%s failed in the storage layer: %s", operation, exc)
        raise PersistenceError(f"{operation} failed: storage unavailable") from exc
    except Exception:
        session.rollback()
        raise
