import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo
from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.core.config import settings
from marketplace.core.errors import (
    AccessDeniedError,
    AccountSuspendedError,
    BookingNotFoundError,
    BookingValidationError,
    DuplicateActiveBookingError,
    ForbiddenTransitionError,
    NotFoundError,
    PreconditionError,
    ProviderBusyError,
    ScheduleConflictError,
)
from marketplace.db.transaction import unit_of_work
from marketplace.db.types import utcnow
from marketplace.models.booking import Booking, BookingStatus, PaymentStatus, ACTIVE_STATUSES
from marketplace.models.cancellation import BookingCancellation
from marketplace.models.provider import Provider
from marketplace.models.service import Service
from marketplace.models.user import User
from marketplace.schemas.booking import booking_view
from marketplace.services.audit_service import log_audit, log_status_change
from marketplace.services.directory_service import get_bookable_provider, get_provider, get_service
from marketplace.services.event_service import (
    BOOKING_CREATED,
    BOOKING_UPDATED,
    EventEmitter,
    PendingEvents,
    default_emitter,
)
from marketplace.services.fees import Invoice, calculate_fees, compute_invoice
from marketplace.services.notification_service import BOOKING_REQUEST, BOOKING_UPDATE, create_notification
from marketplace.services.transitions import ActorRole, Capacity, check_transition, resolve_capacity

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    BookingStatus.CONFIRMED.value: ("Booking Confirmed", "Provider accepted your booking"),
    BookingStatus.IN_PROGRESS.value: ("Service Started", "Provider has started working on your service"),
    BookingStatus.REJECTED.value: ("Booking Rejected", "Provider rejected your booking"),
    BookingStatus.CANCELLED.value: ("Booking Cancelled", "Booking was cancelled"),
    BookingStatus.EXPIRED.value: ("Booking Expired", "Booking expired as the provider did not respond in time"),
    BookingStatus.COMPLETED.value: ("Service Completed", "Service marked as completed"),
}

AUTO_REJECT_REASON = "provider accepted another booking near the same time"


@dataclass
class CreatedBooking:
    booking: Booking
    qr_code_url: str | None
    provider_phone: str | None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def lock_booking(db: Session, booking_id: str) -> Booking:
    """Read a booking for update; concurrent writers on the same row queue behind us."""
    booking = db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if booking is None:
        raise BookingNotFoundError(booking_id)
    return booking


def service_name(db: Session, booking: Booking) -> str:
    service = db.get(Service, booking.service_id)
    return service.name if service else "your service"


def _validate_schedule(scheduled_at: datetime, now: datetime) -> None:
    if scheduled_at <= now:
        raise BookingValidationError("Cannot book a time in the past")
    if scheduled_at > now + timedelta(days=settings.BOOKING_HORIZON_DAYS):
        raise BookingValidationError(f"Bookings are only available within the next {settings.BOOKING_HORIZON_DAYS} days")
    local_hour = scheduled_at.astimezone(ZoneInfo(settings.SERVICE_TIMEZONE)).hour
    if local_hour < settings.SERVICE_HOURS_START:
        raise BookingValidationError(f"Service hours start at {settings.SERVICE_HOURS_START:02d}:00")
    if local_hour >= settings.SERVICE_HOURS_END:
        raise BookingValidationError(f"Service hours end at {settings.SERVICE_HOURS_END:02d}:00")


def _ensure_no_active_duplicate(db: Session, customer_id: str, service_id: str) -> None:
    existing = db.execute(
        select(Booking.id).where(
            Booking.customer_id == customer_id,
            Booking.service_id == service_id,
            Booking.status.in_(ACTIVE_STATUSES),
        ).limit(1)
    ).scalar_one_or_none()
    if existing:
        raise DuplicateActiveBookingError("You already have an active booking for this service")


def ensure_provider_free(db: Session, provider_id: str, exclude_booking_id: str | None = None) -> None:
    q = select(Booking.id).where(
        Booking.provider_id == provider_id,
        Booking.status == BookingStatus.IN_PROGRESS.value,
    )
    if exclude_booking_id:
        q = q.where(Booking.id != exclude_booking_id)
    if db.execute(q.limit(1)).scalar_one_or_none():
        raise ProviderBusyError("This provider is currently busy serving another customer")


def _conflict_window(scheduled_at: datetime) -> tuple[datetime, datetime]:
    window = timedelta(minutes=settings.SCHEDULE_CONFLICT_MINUTES)
    return scheduled_at - window, scheduled_at + window


def _ensure_no_schedule_conflict(db: Session, provider_id: str, scheduled_at: datetime) -> None:
    start, end = _conflict_window(scheduled_at)
    clash = db.execute(
        select(Booking).where(
            Booking.provider_id == provider_id,
            Booking.status.in_([BookingStatus.CONFIRMED.value, BookingStatus.IN_PROGRESS.value]),
            Booking.scheduled_at >= start,
            Booking.scheduled_at <= end,
        ).limit(1)
    ).scalar_one_or_none()
    if clash:
        raise ScheduleConflictError(
            f"Provider is not available at this time; they have a confirmed booking at "
            f"{clash.scheduled_at:%H:%M} UTC. Please choose a different time."
        )


def create_booking(
    db: Session,
    customer_id: str,
    provider_id: str,
    service_id: str,
    scheduled_at: datetime,
    address: str = "",
    city: str = "",
    pincode: str = "",
    requirements: str = "",
    emitter: EventEmitter | None = None,
    now: datetime | None = None,
) -> CreatedBooking:
    now = now or utcnow()
    scheduled_at = _as_utc(scheduled_at)
    _validate_schedule(scheduled_at, now)

    events = PendingEvents()
    try:
        with unit_of_work(db):
            customer = db.get(User, customer_id)
            if customer is None:
                raise NotFoundError("Customer account not found")
            if not customer.is_active:
                raise AccountSuspendedError("Your account is suspended; you cannot make bookings")

            # Provider row lock serializes every creation check for this provider
            provider = get_bookable_provider(db, provider_id, lock=True)
            if provider.user_id == customer.id:
                raise BookingValidationError("You cannot book your own service")
            service = get_service(db, service_id, provider.id)

            _ensure_no_active_duplicate(db, customer_id, service.id)
            if settings.PROVIDER_BUSY_BLOCKS_NEW_BOOKINGS:
                ensure_provider_free(db, provider.id)
            _ensure_no_schedule_conflict(db, provider.id, scheduled_at)

            fees = calculate_fees(service.base_price)
            booking = Booking(
                id=str(uuid.uuid4()),
                customer_id=customer.id,
                provider_id=provider.id,
                service_id=service.id,
                scheduled_at=scheduled_at,
                total_amount=fees.customer_total,
                platform_fee=fees.platform_fee,
                provider_earnings=fees.provider_earnings,
                status=BookingStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
                address=address or "",
                city=city or "",
                pincode=pincode or "",
                requirements=requirements or "",
                created_at=now,
                updated_at=now,
            )
            db.add(booking)
            create_notification(
                db, provider.user_id, BOOKING_REQUEST, "New Booking Request",
                f"{customer.full_name or 'A customer'} has requested {service.name} on {scheduled_at:%Y-%m-%d %H:%M} UTC",
                {"bookingId": booking.id, "serviceId": service.id},
            )
            log_status_change(db, customer.id, booking.id, None, BookingStatus.PENDING.value)
            db.flush()
            events.add(BOOKING_CREATED, {"userId": provider.user_id, "booking": booking_view(booking, include_code=False)})
            result = CreatedBooking(booking=booking, qr_code_url=provider.qr_code_url, provider_phone=provider.phone or None)
    except IntegrityError as exc:
        logger.info("Rejected racing duplicate booking customer=%s service=%s", customer_id, service_id)
        raise DuplicateActiveBookingError("You already have an active booking for this service") from exc

    logger.info("Booking %s created for provider %s (total=%s)", result.booking.id, provider_id, fees.customer_total)
    events.dispatch(emitter or default_emitter())
    return result


def set_status(db: Session, booking: Booking, target: BookingStatus, actor_id: str, reason: str | None = None) -> str:
    """Write a status change and its audit row. Legality is the caller's job."""
    previous = booking.status
    booking.status = target.value
    if booking.is_terminal:
        booking.completion_code = None
    log_status_change(db, actor_id, booking.id, previous, target.value, reason)
    return previous


def queue_booking_events(events: PendingEvents, booking: Booking, provider_user_id: str) -> None:
    events.add(BOOKING_UPDATED, {"userId": booking.customer_id, "booking": booking_view(booking, include_code=True)})
    events.add(BOOKING_UPDATED, {"userId": provider_user_id, "booking": booking_view(booking, include_code=False)})


def _recipients(booking: Booking, provider: Provider, capacity: Capacity) -> list[str]:
    if capacity == Capacity.CUSTOMER:
        return [provider.user_id]
    if capacity == Capacity.PROVIDER:
        return [booking.customer_id]
    return [booking.customer_id, provider.user_id]


def notify_status(db: Session, booking: Booking, recipients: list[str], reason: str | None = None) -> None:
    title, msg = STATUS_MESSAGES[booking.status]
    name = service_name(db, booking)
    for user_id in recipients:
        create_notification(
            db, user_id, BOOKING_UPDATE, title, f"{msg} for {name}",
            {"bookingId": booking.id, "status": booking.status, "reason": reason},
        )


def _auto_reject_conflicts(db: Session, booking: Booking, actor_id: str, provider: Provider, events: PendingEvents) -> int:
    start, end = _conflict_window(booking.scheduled_at)
    conflicting = db.execute(
        select(Booking)
        .where(
            Booking.provider_id == booking.provider_id,
            Booking.id != booking.id,
            Booking.status == BookingStatus.PENDING.value,
            Booking.scheduled_at >= start,
            Booking.scheduled_at <= end,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().all()
    for other in conflicting:
        set_status(db, other, BookingStatus.REJECTED, actor_id, AUTO_REJECT_REASON)
        create_notification(
            db, other.customer_id, BOOKING_UPDATE, "Booking Could Not Be Confirmed",
            f"Your booking for {service_name(db, other)} was auto-rejected as the provider already accepted "
            f"another booking near the same time ({booking.scheduled_at:%H:%M} UTC). Please try a different time.",
            {"bookingId": other.id, "status": other.status},
        )
        queue_booking_events(events, other, provider.user_id)
    if conflicting:
        logger.info("Auto-rejected %d conflicting bookings for provider %s", len(conflicting), booking.provider_id)
    return len(conflicting)


def apply_transition(
    db: Session,
    booking: Booking,
    provider: Provider,
    target: BookingStatus,
    capacity: Capacity | None,
    actor_id: str,
    events: PendingEvents,
    reason: str | None = None,
) -> None:
    check_transition(booking.status, target, capacity)
    if target == BookingStatus.IN_PROGRESS:
        get_provider(db, provider.id, lock=True)
        ensure_provider_free(db, provider.id, exclude_booking_id=booking.id)

    previous = set_status(db, booking, target, actor_id, reason)
    if target == BookingStatus.CANCELLED and reason:
        db.add(BookingCancellation(
            id=str(uuid.uuid4()),
            booking_id=booking.id,
            cancelled_by=actor_id,
            reason=reason,
        ))
    notify_status(db, booking, _recipients(booking, provider, capacity), reason)
    if previous == BookingStatus.PENDING.value and target == BookingStatus.CONFIRMED:
        _auto_reject_conflicts(db, booking, actor_id, provider, events)
    queue_booking_events(events, booking, provider.user_id)


def transition_booking(
    db: Session,
    booking_id: str,
    actor_id: str,
    actor_role: str,
    target_status: str,
    reason: str | None = None,
    emitter: EventEmitter | None = None,
) -> Booking:
    try:
        target = BookingStatus(target_status)
    except ValueError:
        raise BookingValidationError(f"Unknown booking status {target_status!r}")

    events = PendingEvents()
    try:
        with unit_of_work(db):
            booking = lock_booking(db, booking_id)
            provider = get_provider(db, booking.provider_id)
            capacity = resolve_capacity(actor_id, actor_role, booking.customer_id, provider.user_id)
            apply_transition(db, booking, provider, target, capacity, actor_id, events, reason)
            db.flush()
    except IntegrityError as exc:
        raise ProviderBusyError("This provider is currently busy serving another customer") from exc

    logger.info("Booking %s moved to %s by %s (%s)", booking_id, target.value, actor_id, actor_role)
    events.dispatch(emitter or default_emitter())
    return booking


def update_payment_status(
    db: Session,
    booking_id: str,
    actor_id: str,
    actor_role: str,
    payment_status: str,
    emitter: EventEmitter | None = None,
) -> Booking:
    try:
        new_status = PaymentStatus(payment_status)
    except ValueError:
        raise BookingValidationError(f"Unknown payment status {payment_status!r}")

    events = PendingEvents()
    with unit_of_work(db):
        booking = lock_booking(db, booking_id)
        provider = get_provider(db, booking.provider_id)
        capacity = resolve_capacity(actor_id, actor_role, booking.customer_id, provider.user_id)
        if capacity not in (Capacity.PROVIDER, Capacity.ADMIN):
            raise ForbiddenTransitionError("Only the provider or an admin can record payment")
        if booking.status in (BookingStatus.CANCELLED.value, BookingStatus.REJECTED.value, BookingStatus.EXPIRED.value):
            raise PreconditionError(f"Cannot record payment on a {booking.status.lower()} booking")
        previous = booking.payment_status
        booking.payment_status = new_status.value
        log_audit(db, actor_id, "booking.payment_status_changed", "booking", booking.id, {
            "from": previous,
            "to": new_status.value,
        })
        queue_booking_events(events, booking, provider.user_id)

    events.dispatch(emitter or default_emitter())
    return booking


def _capacity_for_read(db: Session, booking: Booking, actor_id: str, actor_role: str) -> Capacity:
    provider = db.get(Provider, booking.provider_id)
    capacity = resolve_capacity(actor_id, actor_role, booking.customer_id, provider.user_id if provider else "")
    if capacity is None:
        raise AccessDeniedError("You are not a party to this booking")
    return capacity


def get_booking_for_actor(db: Session, booking_id: str, actor_id: str, actor_role: str) -> dict:
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise BookingNotFoundError(booking_id)
    capacity = _capacity_for_read(db, booking, actor_id, actor_role)
    return booking_view(booking, include_code=capacity != Capacity.PROVIDER)


def get_invoice(db: Session, booking_id: str, actor_id: str, actor_role: str) -> Invoice:
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise BookingNotFoundError(booking_id)
    _capacity_for_read(db, booking, actor_id, actor_role)
    return compute_invoice(booking)


def list_bookings(
    db: Session,
    actor_id: str,
    actor_role: str,
    status: str | None = None,
    page: int = 1,
    limit: int = 10,
    mine: bool = False,
) -> dict:
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    q = select(Booking)
    include_code = True

    if actor_role not in {r.value for r in ActorRole}:
        raise AccessDeniedError("Unknown role")

    if mine or actor_role == ActorRole.CUSTOMER.value:
        q = q.where(Booking.customer_id == actor_id)
    elif actor_role == ActorRole.PROVIDER.value:
        provider = db.execute(select(Provider).where(Provider.user_id == actor_id)).scalar_one_or_none()
        # Bookings they serve, plus any they placed as a customer elsewhere
        if provider is None:
            q = q.where(Booking.customer_id == actor_id)
        else:
            q = q.where(or_(Booking.provider_id == provider.id, Booking.customer_id == actor_id))
        include_code = False

    if status:
        q = q.where(Booking.status == status)

    total = db.execute(select(func.count()).select_from(q.subquery())).scalar_one()
    rows = db.execute(
        q.order_by(Booking.created_at.desc()).offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    return {
        "data": [booking_view(b, include_code=include_code or b.customer_id == actor_id) for b in rows],
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": math.ceil(total / limit) if total else 0,
    }
