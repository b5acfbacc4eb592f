from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session
from marketplace.db.session import get_db
from marketplace.api.deps import get_current_user, get_session_factory
from marketplace.models.booking import Booking, BookingStatus
from marketplace.models.user import User
from marketplace.schemas.booking import (
    BookingCreate,
    BookingCreatedOut,
    BookingListOut,
    BookingOut,
    CompletionInitiatedOut,
    InvoiceOut,
    PaymentStatusIn,
    ReasonIn,
    TransitionIn,
    VerifyCompletionIn,
    booking_view,
)
from marketplace.services import booking_service, completion_service
from marketplace.services.expiry_service import opportunistic_sweep
from marketplace.services.transitions import ActorRole

router = APIRouter(tags=["bookings"])


def _view(booking: Booking, me: User) -> dict:
    # Providers never see the completion code of bookings they serve
    return booking_view(booking, include_code=me.role != ActorRole.PROVIDER.value or booking.customer_id == me.id)


@router.post("/bookings", response_model=BookingCreatedOut, response_model_exclude_none=True, status_code=201)
def create_booking(body: BookingCreate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    created = booking_service.create_booking(
        db,
        customer_id=me.id,
        provider_id=body.providerId,
        service_id=body.serviceId,
        scheduled_at=body.scheduledAt,
        address=body.address,
        city=body.city,
        pincode=body.pincode,
        requirements=body.requirements,
    )
    out = _view(created.booking, me)
    out["qrCodeUrl"] = created.qr_code_url
    out["providerPhone"] = created.provider_phone
    return out


@router.get("/bookings", response_model=BookingListOut, response_model_exclude_none=True)
def list_bookings(
    background_tasks: BackgroundTasks,
    status: BookingStatus | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    mine: bool = False,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
    session_factory=Depends(get_session_factory),
):
    result = booking_service.list_bookings(
        db, me.id, me.role, status=status.value if status else None, page=page, limit=limit, mine=mine,
    )
    background_tasks.add_task(opportunistic_sweep, session_factory)
    return result


@router.get("/bookings/{booking_id}", response_model=BookingOut, response_model_exclude_none=True)
def get_booking(booking_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return booking_service.get_booking_for_actor(db, booking_id, me.id, me.role)


@router.patch("/bookings/{booking_id}/status", response_model=BookingOut, response_model_exclude_none=True)
def update_status(booking_id: str, body: TransitionIn, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    booking = booking_service.transition_booking(db, booking_id, me.id, me.role, body.status.value, body.reason)
    return _view(booking, me)


def _shortcut(db: Session, booking_id: str, me: User, target: BookingStatus, reason: str | None = None) -> dict:
    booking = booking_service.transition_booking(db, booking_id, me.id, me.role, target.value, reason)
    return _view(booking, me)


@router.post("/bookings/{booking_id}/accept", response_model=BookingOut, response_model_exclude_none=True)
def accept_booking(booking_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return _shortcut(db, booking_id, me, BookingStatus.CONFIRMED)


@router.post("/bookings/{booking_id}/reject", response_model=BookingOut, response_model_exclude_none=True)
def reject_booking(booking_id: str, body: ReasonIn | None = None, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return _shortcut(db, booking_id, me, BookingStatus.REJECTED, body.reason if body else None)


@router.post("/bookings/{booking_id}/start", response_model=BookingOut, response_model_exclude_none=True)
def start_booking(booking_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return _shortcut(db, booking_id, me, BookingStatus.IN_PROGRESS)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingOut, response_model_exclude_none=True)
def cancel_booking(booking_id: str, body: ReasonIn | None = None, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return _shortcut(db, booking_id, me, BookingStatus.CANCELLED, body.reason if body else None)


@router.patch("/bookings/{booking_id}/payment-status", response_model=BookingOut, response_model_exclude_none=True)
def update_payment_status(booking_id: str, body: PaymentStatusIn, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    booking = booking_service.update_payment_status(db, booking_id, me.id, me.role, body.paymentStatus.value)
    return _view(booking, me)


@router.post("/bookings/{booking_id}/complete/initiate", response_model=CompletionInitiatedOut)
def initiate_completion(booking_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    booking = completion_service.initiate_completion(db, booking_id, me.id, me.role)
    return CompletionInitiatedOut(bookingId=booking.id)


@router.post("/bookings/{booking_id}/complete/verify", response_model=BookingOut, response_model_exclude_none=True)
def verify_completion(booking_id: str, body: VerifyCompletionIn, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    booking = completion_service.verify_completion(db, booking_id, me.id, me.role, body.code)
    return _view(booking, me)


@router.get("/bookings/{booking_id}/invoice", response_model=InvoiceOut)
def get_invoice(booking_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    inv = booking_service.get_invoice(db, booking_id, me.id, me.role)
    return InvoiceOut(
        invoiceNumber=inv.invoice_number,
        bookingId=inv.booking_id,
        date=inv.date,
        subtotal=inv.subtotal,
        platformFee=inv.platform_fee,
        tax=inv.tax,
        grandTotal=inv.grand_total,
        providerEarnings=inv.provider_earnings,
    )
