from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from marketplace.services.fees import calculate_fees, compute_invoice


def test_fee_split_for_1000():
    fees = calculate_fees(1000)
    assert fees.customer_total == Decimal("1000.00")
    assert fees.platform_fee == Decimal("70.00")
    assert fees.provider_earnings == Decimal("930.00")


@pytest.mark.parametrize("price", ["0", "0.07", "12.35", "99.99", "149.50", "1234.56"])
def test_fee_plus_earnings_is_price(price):
    fees = calculate_fees(Decimal(price))
    assert fees.platform_fee + fees.provider_earnings == fees.customer_total


def test_fee_rounds_half_up():
    # 7% of 0.50 is 0.035
    assert calculate_fees("0.50").platform_fee == Decimal("0.04")


def test_negative_price_rejected():
    with pytest.raises(ValueError):
        calculate_fees(-1)


def test_invoice_for_1000():
    booking = SimpleNamespace(
        id="abcdef12-3456-7890-abcd-ef1234567890",
        total_amount=Decimal("1000.00"),
        platform_fee=Decimal("70.00"),
        provider_earnings=Decimal("930.00"),
        created_at=datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc),
    )
    inv = compute_invoice(booking)
    assert inv.invoice_number == "INV-ABCDEF12"
    assert inv.booking_id == booking.id
    assert inv.subtotal == Decimal("1000.00")
    assert inv.platform_fee == Decimal("70.00")
    assert inv.tax == Decimal("80.00")
    assert inv.grand_total == Decimal("1080.00")
    assert inv.provider_earnings == Decimal("930.00")
    # invoicing never writes back
    assert booking.total_amount == Decimal("1000.00")
