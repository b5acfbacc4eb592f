from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import List, Optional

from marketplace.models.booking import BookingStatus, PaymentStatus


class BookingCreate(BaseModel):
    providerId: str
    serviceId: str
    scheduledAt: datetime
    address: str = Field(default="", max_length=500)
    city: str = Field(default="", max_length=120)
    pincode: str = Field(default="", max_length=12)
    requirements: str = ""


class TransitionIn(BaseModel):
    status: BookingStatus
    reason: Optional[str] = Field(default=None, max_length=500)


class ReasonIn(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class PaymentStatusIn(BaseModel):
    paymentStatus: PaymentStatus


class VerifyCompletionIn(BaseModel):
    code: str = Field(min_length=1, max_length=12)


class BookingOut(BaseModel):
    id: str
    customerId: str
    providerId: str
    serviceId: str
    status: str
    paymentStatus: str
    scheduledAt: datetime
    createdAt: datetime
    totalAmount: Decimal
    platformFee: Decimal
    providerEarnings: Decimal
    address: str = ""
    city: str = ""
    pincode: str = ""
    requirements: str = ""
    # Present only on customer/admin views while completion is pending
    completionCode: Optional[str] = None


class BookingCreatedOut(BookingOut):
    qrCodeUrl: Optional[str] = None
    providerPhone: Optional[str] = None
    instructions: str = "Please pay the provider directly using the QR code or cash."


class BookingListOut(BaseModel):
    data: List[BookingOut]
    page: int
    limit: int
    total: int
    totalPages: int


class InvoiceOut(BaseModel):
    invoiceNumber: str
    bookingId: str
    date: datetime
    subtotal: Decimal
    platformFee: Decimal
    tax: Decimal
    grandTotal: Decimal
    providerEarnings: Decimal


class CompletionInitiatedOut(BaseModel):
    bookingId: str
    message: str = "Completion code sent to customer"


class SweepResultOut(BaseModel):
    expired: int
    failed: int
    skipped: int
    bookingIds: List[str]


def booking_view(booking, include_code: bool) -> dict:
    """Plain-dict rendering of a booking.

    Provider-facing callers pass include_code=False; the completion code is
    then absent from the output entirely.
    """
    out = {
        "id": booking.id,
        "customerId": booking.customer_id,
        "providerId": booking.provider_id,
        "serviceId": booking.service_id,
        "status": booking.status,
        "paymentStatus": booking.payment_status,
        "scheduledAt": booking.scheduled_at,
        "createdAt": booking.created_at,
        "totalAmount": booking.total_amount,
        "platformFee": booking.platform_fee,
        "providerEarnings": booking.provider_earnings,
        "address": booking.address or "",
        "city": booking.city or "",
        "pincode": booking.pincode or "",
        "requirements": booking.requirements or "",
    }
    if include_code and booking.completion_code:
        out["completionCode"] = booking.completion_code
    return out
