import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from .config import settings
from .errors import TransientError

logger = logging.getLogger("booking_service")

T = TypeVar("T")

# Postgres: serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}


def is_retryable(exc: DBAPIError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True
    # SQLite reports lock contention only through the message
    return "database is locked" in str(orig)


def run_in_transaction(
        db: Session,
        work: Callable[[Session], T],
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
) -> T:
    """
    Runs ``work`` and commits. Serialization failures and deadlocks roll back
    and retry with linear backoff; once the budget is spent a TransientError
    is raised. Any other exception rolls back and propagates unchanged.

    ``work`` must be safe to re-run from scratch: it should read everything
    it needs through ``db`` rather than capture ORM state from outside.
    """
    attempts = max_attempts or settings.TRANSACTION_MAX_ATTEMPTS
    backoff = settings.TRANSACTION_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds

    for attempt in range(1, attempts + 1):
        try:
            result = work(db)
            db.commit()
            return result
        except DBAPIError as e:
            db.rollback()
            if not is_retryable(e):
                raise
            if attempt >= attempts:
                logger.error(f"Transaction still conflicting after {attempts} attempts: {e.orig}")
                raise TransientError("The booking system is busy. Please try again.") from e
            logger.warning(f"Transaction conflict on attempt {attempt}/{attempts}: {e.orig}. Retrying...")
            time.sleep(backoff * attempt)
        except Exception:
            db.rollback()
            raise

    # range() above always returns or raises
    raise AssertionError("unreachable")
