"""
Stale-booking sweeper.

A PENDING booking the provider never answered expires once it is older than
STALE_BOOKING_MINUTES. Each booking is expired in its own transaction, so one
bad row or a lost lock race only costs that row; the rest of the batch carries on.
"""
import logging
from datetime import datetime, timedelta
from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.core.config import settings
from marketplace.db.transaction import unit_of_work
from marketplace.db.types import utcnow
from marketplace.models.booking import Booking, BookingStatus
from marketplace.services.audit_service import SYSTEM_ACTOR
from marketplace.services.booking_service import apply_transition, lock_booking
from marketplace.services.directory_service import get_provider
from marketplace.services.event_service import EventEmitter, PendingEvents, default_emitter
from marketplace.services.transitions import Capacity

logger = logging.getLogger(__name__)

EXPIRY_REASON = "provider did not respond in time"


def stale_booking_ids(db: Session, cutoff: datetime) -> list[str]:
    return list(db.execute(
        select(Booking.id)
        .where(Booking.status == BookingStatus.PENDING.value, Booking.created_at < cutoff)
        .order_by(Booking.created_at.asc())
    ).scalars().all())


def _expire_one(db: Session, booking_id: str, events: PendingEvents) -> bool:
    with unit_of_work(db):
        booking = lock_booking(db, booking_id)
        # Accepted, cancelled or already expired since the scan
        if booking.status != BookingStatus.PENDING.value:
            return False
        provider = get_provider(db, booking.provider_id)
        apply_transition(
            db, booking, provider, BookingStatus.EXPIRED, Capacity.SYSTEM, SYSTEM_ACTOR, events, EXPIRY_REASON,
        )
    return True


def expire_stale_bookings(
    db: Session,
    now: datetime | None = None,
    threshold_minutes: int | None = None,
    emitter: EventEmitter | None = None,
) -> dict:
    now = now or utcnow()
    minutes = settings.STALE_BOOKING_MINUTES if threshold_minutes is None else threshold_minutes
    cutoff = now - timedelta(minutes=minutes)
    emitter = emitter or default_emitter()

    candidates = stale_booking_ids(db, cutoff)
    db.rollback()

    expired: list[str] = []
    failed = skipped = 0
    for booking_id in candidates:
        events = PendingEvents()
        try:
            done = _expire_one(db, booking_id, events)
        except Exception:
            failed += 1
            logger.exception("Failed to expire booking %s", booking_id)
            continue
        if not done:
            skipped += 1
            continue
        expired.append(booking_id)
        events.dispatch(emitter)

    if candidates:
        logger.info(
            "Stale booking sweep: %d expired, %d skipped, %d failed (cutoff %s)",
            len(expired), skipped, failed, cutoff.isoformat(),
        )
    return {"expired": len(expired), "failed": failed, "skipped": skipped, "bookingIds": expired}


def run_sweep(session_factory, **kwargs) -> dict:
    """Sweep on a session of its own, for callers outside a request's session."""
    db = session_factory()
    try:
        return expire_stale_bookings(db, **kwargs)
    finally:
        db.close()


def opportunistic_sweep(session_factory) -> None:
    """Piggy-back a sweep on read traffic; a failure here must never reach the reader."""
    try:
        run_sweep(session_factory)
    except Exception:
        logger.exception("Opportunistic stale booking sweep failed")
