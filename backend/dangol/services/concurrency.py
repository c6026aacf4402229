# Overview: Transaction helpers shared by the claim ledger and deal lifecycle.

from __future__ import annotations

import time

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import DealEngineError, StorageUnavailableError
from ..extensions import db


# Driver messages that mean "another transaction holds the row", not "the database is down".
LOCK_CONFLICT_MARKERS = (
    "database is locked",
    "database table is locked",
    "deadlock detected",
    "could not serialize access",
    "could not obtain lock",
    "lock timeout",
)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE. Callers that must stay correct
    on SQLite pair this with a conditional UPDATE and check its row count.
    """
    return query.with_for_update()


def is_lock_conflict(exc: Exception) -> bool:
    if isinstance(exc, StaleDataError):
        return True
    message = str(getattr(exc, "orig", exc)).lower()
    return any(marker in message for marker in LOCK_CONFLICT_MARKERS)


def run_with_retry(func, *, attempts: int = 5, backoff_base: float = 0.05):
    """
    Execute a DB operation, retrying only on concurrency conflicts.

    Lock waits, deadlocks and optimistic-lock (StaleDataError) conflicts are
    retried with exponential backoff. Any other driver failure is reported as
    StorageUnavailableError straight away. Domain errors and integrity errors
    roll the session back and propagate unchanged.
    """
    for attempt in range(attempts):
        try:
            return func()
        except DealEngineError:
            db.session.rollback()
            raise
        except IntegrityError:
            db.session.rollback()
            raise
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if not is_lock_conflict(exc):
                raise StorageUnavailableError("Database is unavailable") from exc
            if attempt >= attempts - 1:
                raise StorageUnavailableError("Database is busy, try again") from exc
            time.sleep(backoff_base * (2 ** attempt))
        except DBAPIError as exc:
            db.session.rollback()
            raise StorageUnavailableError("Database is unavailable") from exc
