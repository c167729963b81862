# Overview: Transaction scope helpers: row locking, bounded retry, statement timeouts.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import TransactionConflict
from ..extensions import db

logger = logging.getLogger(__name__)


class InsertRace(Exception):
    """Another transaction inserted the same unique key first."""


# Lock timeouts, deadlocks, serialization failures and statement timeouts all
# surface as OperationalError; StaleDataError is an optimistic version clash.
# Other IntegrityErrors (CHECK, NOT NULL, foreign keys) are bugs, not races.
RETRYABLE_ERRORS = (OperationalError, StaleDataError, InsertRace)


def insert_first_writer(instance):
    """
    Add and flush a row guarded by a unique key.

    A unique violation here means a concurrent writer won the insert; it is
    raised as InsertRace so run_with_retry re-runs the unit, which then finds
    the committed row.
    """
    db.session.add(instance)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise InsertRace(str(exc.orig)) from exc
    return instance


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Quantity writes never depend on it alone: batch_store uses conditional
    UPDATEs that re-check the quantity in the database.
    """
    return query.with_for_update()


def _retry_settings(attempts: int | None, backoff_base: float | None) -> tuple[int, float]:
    config = current_app.config
    if attempts is None:
        attempts = int(config.get("TX_RETRY_ATTEMPTS", 3))
    if backoff_base is None:
        backoff_base = float(config.get("TX_RETRY_BACKOFF_SECONDS", 0.1))
    return max(1, attempts), backoff_base


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute one transactional unit of work, retrying on concurrency failures.

    `func` must do all of its reads and writes through db.session and commit
    at the end. Any exception rolls the session back, so an interrupted unit
    leaves no observable effect. Retryable failures are re-run from scratch
    with exponential backoff; once the attempts are used up the failure is
    surfaced as TransactionConflict. Domain errors propagate unchanged.
    """
    attempts, backoff_base = _retry_settings(attempts, backoff_base)

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.warning("transaction conflict after %d attempts: %s", attempts, exc)
                raise TransactionConflict(
                    "Concurrent update conflict; retry the operation",
                    details={"attempts": attempts},
                ) from exc
            delay = backoff_base * (2 ** attempt)
            logger.info("retrying transaction (attempt %d/%d) in %.2fs", attempt + 2, attempts, delay)
            time.sleep(delay)
        except Exception:
            db.session.rollback()
            raise


def commit_with_retry(*, attempts: int | None = None, backoff_base: float | None = None):
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)


def engine_options(database_uri: str, statement_timeout_ms: int) -> dict:
    """
    SQLAlchemy engine options that bound how long a statement may block.

    - PostgreSQL: server-side statement_timeout for every connection
    - SQLite: busy timeout (seconds) while waiting for the write lock
    """
    if database_uri.startswith("postgresql"):
        return {
            "connect_args": {"options": f"-c statement_timeout={int(statement_timeout_ms)}"},
            "pool_pre_ping": True,
        }
    if database_uri.startswith("sqlite"):
        return {"connect_args": {"timeout": max(statement_timeout_ms, 1) / 1000.0}}
    return {}
