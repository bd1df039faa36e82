# Overview: Row locking and retry helpers shared by every mutating service.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConflictError

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def get_for_update(model, row_id: int):
    """Load one row by primary key under a row lock (None when missing)."""
    if row_id is None:
        return None
    return lock_for_update(db.session.query(model).filter_by(id=row_id)).first()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts on version_id columns).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying after concurrency failure (attempt %s): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def commit_or_conflict():
    """
    Commit the request's unit of work.

    A failed commit discards the pending changes, so it is never retried on
    its own: the session is rolled back and ConflictError (409) tells the
    client to resend. Retries belong around the whole service operation
    (run_with_retry).
    """
    try:
        db.session.commit()
    except (OperationalError, StaleDataError) as exc:
        db.session.rollback()
        logger.warning("Commit failed, changes discarded: %s", exc)
        raise ConflictError(
            "The record was changed by another request. Please try again.",
            {"transaction": ["Concurrent update conflict."]},
        ) from exc
