from sqlalchemy.exc import ProgrammingError
from marketplace.db.session import SessionLocal
from marketplace.services.expiry_service import run_sweep

def expire_stale_bookings() -> dict:
    """Expire PENDING bookings the provider never answered. Run periodically via Celery beat."""
    try:
        return run_sweep(SessionLocal)
    except ProgrammingError:
        # DB not migrated yet; don't crash the worker.
        return {"skipped": True, "reason": "missing_tables"}
