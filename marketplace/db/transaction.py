import logging
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from marketplace.core.config import settings
from marketplace.core.errors import ConflictError

logger = logging.getLogger(__name__)

# lock_not_available, serialization_failure, deadlock_detected
RETRYABLE_PGCODES = {"55P03", "40001", "40P01"}


def is_lock_failure(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None)
    if pgcode in RETRYABLE_PGCODES:
        return True
    # SQLite reports writer contention as "database is locked"
    return "database is locked" in str(orig or exc).lower()


def _apply_lock_timeout(db: Session) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    timeout_ms = int(settings.DB_LOCK_TIMEOUT_MS)
    db.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))


@contextmanager
def unit_of_work(db: Session):
    """Run the enclosed block as one transaction.

    Commits on success and rolls back on any error. Lock timeouts, serialization
    failures and deadlocks surface as ConflictError; everything else propagates
    unchanged so callers can map integrity violations to domain errors.
    """
    try:
        _apply_lock_timeout(db)
        yield db
        db.commit()
    except DBAPIError as exc:
        db.rollback()
        if is_lock_failure(exc):
            logger.warning("Unit of work lost a lock race: %s", exc.orig)
            raise ConflictError("Booking is being modified concurrently, retry shortly") from exc
        raise
    except Exception:
        db.rollback()
        raise
