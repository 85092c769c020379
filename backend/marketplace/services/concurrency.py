# Overview: Transaction helpers shared by every mutating service operation.

from __future__ import annotations

import time

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

# Deadlocks/lock timeouts and optimistic-lock conflicts
RETRYABLE_ERRORS = (OperationalError, StaleDataError)

# Also retry unique-constraint races (first document number for a store,
# concurrent webhook redelivery); the retry re-reads and takes the other path.
RETRYABLE_WITH_UNIQUE = RETRYABLE_ERRORS + (IntegrityError,)


def lock_for_update(query):
    """
    Apply row-level locking (SELECT ... FOR UPDATE) to a query.

    NOTE: SQLite ignores FOR UPDATE; there the version_id columns and the
    database-level write lock keep read-modify-write cycles safe.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on=RETRYABLE_ERRORS):
    """
    Execute one unit of work as a single transaction.

    - Errors in `retry_on` roll back and retry with exponential backoff.
    - Any other exception rolls back and propagates; no partial writes survive
      a failed call.

    `func` is expected to commit on success.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
