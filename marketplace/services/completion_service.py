"""
Completion codes: the in-person handshake that closes a booking.

The provider asks the platform to start completion, the customer receives a
6-digit code, and the provider types back what the customer reads out. A match
completes the booking and books the money counters in one transaction.

Verification keeps no attempt counter and, with the default
backend, no expiry: the code lives until it is verified or the booking ends.
"""
import logging
import secrets
from typing import Protocol
from sqlalchemy.orm import Session

from marketplace.core.config import settings
from marketplace.core.errors import (
    CompletionNotInitiatedError,
    ForbiddenTransitionError,
    InvalidCompletionCodeError,
    InvalidTransitionError,
)
from marketplace.db.transaction import unit_of_work
from marketplace.models.booking import Booking, BookingStatus
from marketplace.services.booking_service import (
    lock_booking,
    queue_booking_events,
    set_status,
    service_name,
)
from marketplace.services.directory_service import (
    get_provider,
    increment_customer_spend,
    increment_provider_revenue,
)
from marketplace.services.event_service import (
    REVENUE_UPDATED,
    WALLET_UPDATED,
    EventEmitter,
    PendingEvents,
    default_emitter,
)
from marketplace.services.kv_store import KeyValueStore, RedisKeyValueStore
from marketplace.services.notification_service import (
    BOOKING_UPDATE,
    COMPLETION_INITIATED,
    COMPLETION_OTP,
    create_notification,
)
from marketplace.services.transitions import Capacity, check_transition, resolve_capacity

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
COMPLETABLE_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.IN_PROGRESS.value)


def generate_code() -> str:
    return str(secrets.randbelow(9 * 10 ** (CODE_LENGTH - 1)) + 10 ** (CODE_LENGTH - 1))


class CodeStore(Protocol):
    def put(self, db: Session, booking: Booking, code: str) -> None: ...

    def get(self, db: Session, booking: Booking) -> str | None: ...

    def clear(self, db: Session, booking: Booking) -> None: ...

    def after_commit_clear(self, booking_id: str) -> None: ...


class BookingColumnCodeStore:
    """Keeps the code on the booking row, so clearing it commits with the completion."""

    def put(self, db: Session, booking: Booking, code: str) -> None:
        booking.completion_code = code

    def get(self, db: Session, booking: Booking) -> str | None:
        return booking.completion_code

    def clear(self, db: Session, booking: Booking) -> None:
        booking.completion_code = None

    def after_commit_clear(self, booking_id: str) -> None:
        return None


class KeyValueCodeStore:
    """Keeps codes in a KeyValueStore with an optional TTL.

    The key is removed only after the completion commits; a leftover key for a
    finished booking is inert because verification requires an open booking.
    """

    def __init__(self, kv: KeyValueStore, ttl_seconds: int | None = None):
        self.kv = kv
        self.ttl_seconds = ttl_seconds or None

    @staticmethod
    def key_for(booking_id: str) -> str:
        return f"completion-code:{booking_id}"

    def put(self, db: Session, booking: Booking, code: str) -> None:
        self.kv.set(self.key_for(booking.id), code, self.ttl_seconds)

    def get(self, db: Session, booking: Booking) -> str | None:
        return self.kv.get(self.key_for(booking.id))

    def clear(self, db: Session, booking: Booking) -> None:
        booking.completion_code = None

    def after_commit_clear(self, booking_id: str) -> None:
        self.kv.delete(self.key_for(booking_id))


def default_code_store() -> CodeStore:
    if settings.COMPLETION_CODE_BACKEND == "kv":
        return KeyValueCodeStore(RedisKeyValueStore(), settings.COMPLETION_CODE_TTL_SECONDS)
    return BookingColumnCodeStore()


def _completion_capacity(booking: Booking, provider, actor_id: str, actor_role: str) -> Capacity:
    capacity = resolve_capacity(actor_id, actor_role, booking.customer_id, provider.user_id)
    if capacity not in (Capacity.PROVIDER, Capacity.ADMIN):
        raise ForbiddenTransitionError("Only the provider or an admin can complete a booking")
    return capacity


def _ensure_completable(booking: Booking) -> None:
    if booking.status not in COMPLETABLE_STATUSES:
        raise InvalidTransitionError(
            booking.status, BookingStatus.COMPLETED.value,
            "Completion is only possible for confirmed or in-progress bookings",
        )


def initiate_completion(
    db: Session,
    booking_id: str,
    actor_id: str,
    actor_role: str,
    code_store: CodeStore | None = None,
    emitter: EventEmitter | None = None,
) -> Booking:
    code_store = code_store or default_code_store()
    events = PendingEvents()
    with unit_of_work(db):
        booking = lock_booking(db, booking_id)
        provider = get_provider(db, booking.provider_id)
        _completion_capacity(booking, provider, actor_id, actor_role)
        _ensure_completable(booking)

        code = generate_code()
        code_store.put(db, booking, code)

        name = service_name(db, booking)
        create_notification(
            db, booking.customer_id, COMPLETION_OTP, "Verify Service Completion",
            f"Your provider requested completion of {name}. Share this code with them: {code}",
            {"bookingId": booking.id, "code": code},
        )
        create_notification(
            db, provider.user_id, COMPLETION_INITIATED, "Completion Initiated",
            "Ask the customer for the 6-digit verification code.",
            {"bookingId": booking.id},
        )
        queue_booking_events(events, booking, provider.user_id)

    logger.info("Completion initiated for booking %s by %s", booking_id, actor_id)
    events.dispatch(emitter or default_emitter())
    return booking


def verify_completion(
    db: Session,
    booking_id: str,
    actor_id: str,
    actor_role: str,
    supplied_code: str,
    code_store: CodeStore | None = None,
    emitter: EventEmitter | None = None,
) -> Booking:
    code_store = code_store or default_code_store()
    events = PendingEvents()
    with unit_of_work(db):
        booking = lock_booking(db, booking_id)
        provider = get_provider(db, booking.provider_id)
        capacity = _completion_capacity(booking, provider, actor_id, actor_role)
        _ensure_completable(booking)

        stored = code_store.get(db, booking)
        if not stored:
            raise CompletionNotInitiatedError("Completion has not been initiated for this booking")
        if supplied_code != stored:
            raise InvalidCompletionCodeError("Invalid completion code")

        code_store.clear(db, booking)
        # The IN_PROGRESS hop is only audited; the row is written straight as COMPLETED
        if booking.status == BookingStatus.CONFIRMED.value:
            check_transition(booking.status, BookingStatus.IN_PROGRESS, capacity)
            set_status(db, booking, BookingStatus.IN_PROGRESS, actor_id, "completion code verified")
        check_transition(booking.status, BookingStatus.COMPLETED, Capacity.SYSTEM)
        set_status(db, booking, BookingStatus.COMPLETED, actor_id, "completion code verified")

        revenue = increment_provider_revenue(db, provider.id, booking.provider_earnings)
        spending = increment_customer_spend(db, booking.customer_id, booking.total_amount)
        create_notification(
            db, booking.customer_id, BOOKING_UPDATE, "Service Completed",
            f"Your service for {service_name(db, booking)} has been marked as completed.",
            {"bookingId": booking.id, "status": booking.status},
        )
        queue_booking_events(events, booking, provider.user_id)
        events.add(REVENUE_UPDATED, {"userId": provider.user_id, "totalRevenue": revenue})
        events.add(WALLET_UPDATED, {"userId": booking.customer_id, "totalSpending": spending})

    try:
        code_store.after_commit_clear(booking_id)
    except Exception:
        logger.exception("Failed to drop completion code for booking %s", booking_id)
    logger.info("Booking %s completed; provider %s earned %s", booking_id, provider.id, booking.provider_earnings)
    events.dispatch(emitter or default_emitter())
    return booking
