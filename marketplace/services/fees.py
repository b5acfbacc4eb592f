from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

PLATFORM_FEE_RATE = Decimal("0.07")
GST_RATE = Decimal("0.08")  # applied at invoice time only, never stored
CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FeeBreakdown:
    price: Decimal
    platform_fee: Decimal
    provider_earnings: Decimal
    customer_total: Decimal


def calculate_fees(price) -> FeeBreakdown:
    """Split a service price into the platform's cut and the provider's share.

    Earnings are derived by subtraction so that fee + earnings == price holds
    exactly after rounding.
    """
    price = _money(price)
    if price < 0:
        raise ValueError("price must be >= 0")
    fee = _money(price * PLATFORM_FEE_RATE)
    return FeeBreakdown(
        price=price,
        platform_fee=fee,
        provider_earnings=price - fee,
        customer_total=price,
    )


@dataclass(frozen=True)
class Invoice:
    invoice_number: str
    booking_id: str
    date: datetime
    subtotal: Decimal
    platform_fee: Decimal
    tax: Decimal
    grand_total: Decimal
    provider_earnings: Decimal


def compute_invoice(booking) -> Invoice:
    """Derive the invoice for a booking. Reads only; the booking is left untouched."""
    subtotal = _money(booking.total_amount)
    platform_fee = _money(subtotal * PLATFORM_FEE_RATE)
    tax = _money(subtotal * GST_RATE)
    return Invoice(
        invoice_number=f"INV-{booking.id[:8].upper()}",
        booking_id=booking.id,
        date=booking.created_at,
        subtotal=subtotal,
        platform_fee=platform_fee,
        tax=tax,
        grand_total=subtotal + tax,
        provider_earnings=subtotal - platform_fee,
    )
