# Overview: Transaction boundary and concurrency guards shared by stock and sale writes.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflict, PersistenceError
from ..extensions import db

logger = logging.getLogger(__name__)

# Driver messages that mean "another writer got there first", as opposed to
# connectivity or schema problems which are not worth retrying.
_CONFLICT_MARKERS = (
    "database is locked",
    "database table is locked",
    "deadlock",
    "could not serialize",
    "lock wait timeout",
    "could not obtain lock",
)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_transaction()
    takes the database write lock there instead.
    """
    return query.with_for_update()


def begin_write_transaction() -> None:
    """
    Take the write lock before the first read of a read-modify-write.

    On SQLite the whole database is the lock unit, so BEGIN IMMEDIATE
    serializes competing writers before they read stock. Must be the first
    statement of the session's transaction.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def is_concurrency_error(exc: BaseException) -> bool:
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, OperationalError):
        message = str(getattr(exc, "orig", exc)).lower()
        return any(marker in message for marker in _CONFLICT_MARKERS)
    return False


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on lock/deadlock OperationalErrors and StaleDataError
    (optimistic locking conflicts). Any other error propagates on the
    first occurrence.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if not is_concurrency_error(exc) or attempt >= attempts - 1:
                raise
            logger.warning(
                "Concurrent write conflict (attempt %s/%s): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))


def with_transaction(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Run func as one atomic unit of work.

    Commits when func returns, rolls back on any exception. Concurrency
    conflicts retry the whole unit (func must therefore re-read everything
    it needs). Exhausted retries surface as ConcurrencyConflict; other
    storage failures as PersistenceError. Domain errors propagate unchanged.
    """
    if attempts is None:
        attempts = current_app.config["SALE_RETRY_ATTEMPTS"]
    if backoff_base is None:
        backoff_base = current_app.config["RETRY_BACKOFF_SECONDS"]

    def _op():
        try:
            begin_write_transaction()
            result = func()
            db.session.commit()
            return result
        except BaseException:
            db.session.rollback()
            raise

    try:
        return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
    except (OperationalError, StaleDataError) as exc:
        if is_concurrency_error(exc):
            raise ConcurrencyConflict(
                "Concurrent updates kept conflicting; please retry",
                details={"attempts": attempts},
            ) from exc
        raise PersistenceError("Database operation failed") from exc
    except SQLAlchemyError as exc:
        raise PersistenceError("Database operation failed") from exc
