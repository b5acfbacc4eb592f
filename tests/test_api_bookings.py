import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from marketplace.models.booking import Booking
from marketplace.models.notification import Notification
from marketplace.models.user import User


def _iso(dt: datetime) -> str:
    return dt.isoformat()


def _create(client, auth, customer, provider, service, when):
    return client.post(
        "/api/v1/bookings",
        json={"providerId": provider.id, "serviceId": service.id, "scheduledAt": _iso(when), "address": "1 Main St"},
        headers=auth(customer),
    )


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requires_token(client):
    assert client.get("/api/v1/bookings").status_code == 401
    bad = client.get("/api/v1/bookings", headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401


def test_create_booking(client, auth, customer, provider, service, soon):
    resp = _create(client, auth, customer, provider, service, soon)
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["status"] == "PENDING"
    assert Decimal(str(body["totalAmount"])) == Decimal("1000")
    assert Decimal(str(body["platformFee"])) == Decimal("70")
    assert Decimal(str(body["providerEarnings"])) == Decimal("930")
    assert body["qrCodeUrl"] == provider.qr_code_url
    assert body["providerPhone"] == provider.phone
    assert "completionCode" not in body


def test_domain_errors_carry_code_and_retryable(client, auth, customer, provider, service, soon):
    assert _create(client, auth, customer, provider, service, soon).status_code == 201
    resp = _create(client, auth, customer, provider, service, soon)
    assert resp.status_code == 409
    assert resp.json()["code"] == "DuplicateActiveBookingError"
    assert resp.json()["retryable"] is False


def test_past_schedule_is_400(client, auth, customer, provider, service):
    resp = _create(client, auth, customer, provider, service, datetime.now(timezone.utc) - timedelta(hours=1))
    assert resp.status_code == 400


def test_provider_accept_and_customer_view(client, auth, db, customer, provider, service, soon):
    booking_id = _create(client, auth, customer, provider, service, soon).json()["id"]
    provider_user = db.get(User, provider.user_id)

    resp = client.post(f"/api/v1/bookings/{booking_id}/accept", headers=auth(provider_user))
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "CONFIRMED"

    again = client.post(f"/api/v1/bookings/{booking_id}/accept", headers=auth(provider_user))
    assert again.status_code == 409

    view = client.get(f"/api/v1/bookings/{booking_id}", headers=auth(customer))
    assert view.json()["status"] == "CONFIRMED"


def test_customer_cannot_accept(client, auth, customer, provider, service, soon):
    booking_id = _create(client, auth, customer, provider, service, soon).json()["id"]
    resp = client.post(f"/api/v1/bookings/{booking_id}/accept", headers=auth(customer))
    assert resp.status_code == 403


def test_status_patch_and_cancel_with_reason(client, auth, customer, provider, service, soon):
    booking_id = _create(client, auth, customer, provider, service, soon).json()["id"]
    resp = client.post(f"/api/v1/bookings/{booking_id}/cancel", json={"reason": "no longer needed"}, headers=auth(customer))
    assert resp.json()["status"] == "CANCELLED"

    resp = client.patch(f"/api/v1/bookings/{booking_id}/status", json={"status": "PENDING"}, headers=auth(customer))
    assert resp.status_code == 409
    assert resp.json()["code"] == "TerminalStateError"


def test_completion_over_http(client, auth, db, customer, provider, service, soon):
    booking_id = _create(client, auth, customer, provider, service, soon).json()["id"]
    provider_user = db.get(User, provider.user_id)
    client.post(f"/api/v1/bookings/{booking_id}/accept", headers=auth(provider_user))

    resp = client.post(f"/api/v1/bookings/{booking_id}/complete/initiate", headers=auth(provider_user))
    assert resp.status_code == 200
    assert resp.json()["bookingId"] == booking_id

    provider_view = client.get(f"/api/v1/bookings/{booking_id}", headers=auth(provider_user)).json()
    assert "completionCode" not in provider_view
    code = client.get(f"/api/v1/bookings/{booking_id}", headers=auth(customer)).json()["completionCode"]

    wrong = "000000" if code != "000000" else "111111"
    bad = client.post(f"/api/v1/bookings/{booking_id}/complete/verify", json={"code": wrong}, headers=auth(provider_user))
    assert bad.status_code == 400
    assert bad.json()["code"] == "InvalidCompletionCodeError"

    ok = client.post(f"/api/v1/bookings/{booking_id}/complete/verify", json={"code": code}, headers=auth(provider_user))
    assert ok.status_code == 200
    assert ok.json()["status"] == "COMPLETED"
    assert "completionCode" not in ok.json()


def test_payment_status_route(client, auth, db, customer, provider, service, soon):
    booking_id = _create(client, auth, customer, provider, service, soon).json()["id"]
    provider_user = db.get(User, provider.user_id)
    resp = client.patch(
        f"/api/v1/bookings/{booking_id}/payment-status", json={"paymentStatus": "SUCCESS"}, headers=auth(provider_user),
    )
    assert resp.json()["paymentStatus"] == "SUCCESS"
    denied = client.patch(
        f"/api/v1/bookings/{booking_id}/payment-status", json={"paymentStatus": "FAILED"}, headers=auth(customer),
    )
    assert denied.status_code == 403


def test_invoice_route(client, auth, customer, provider, service, soon):
    booking_id = _create(client, auth, customer, provider, service, soon).json()["id"]
    inv = client.get(f"/api/v1/bookings/{booking_id}/invoice", headers=auth(customer)).json()
    assert inv["invoiceNumber"] == f"INV-{booking_id[:8].upper()}"
    assert Decimal(str(inv["tax"])) == Decimal("80")
    assert Decimal(str(inv["grandTotal"])) == Decimal("1080")


def test_list_runs_opportunistic_sweep(client, auth, db, customer, provider, service):
    stale = Booking(
        id="stale-booking-0001",
        customer_id=customer.id,
        provider_id=provider.id,
        service_id=service.id,
        scheduled_at=datetime.now(timezone.utc) + timedelta(hours=1),
        total_amount=Decimal("1000"),
        platform_fee=Decimal("70"),
        provider_earnings=Decimal("930"),
        status="PENDING",
        payment_status="PENDING",
        created_at=datetime.now(timezone.utc) - timedelta(hours=3),
    )
    db.add(stale)
    db.commit()

    resp = client.get("/api/v1/bookings", headers=auth(customer))
    assert resp.status_code == 200
    assert resp.json()["total"] == 1

    db.expire_all()
    assert db.get(Booking, "stale-booking-0001").status == "EXPIRED"


def test_list_filters_by_status(client, auth, customer, provider, service, soon):
    _create(client, auth, customer, provider, service, soon)
    assert client.get("/api/v1/bookings?status=PENDING", headers=auth(customer)).json()["total"] == 1
    assert client.get("/api/v1/bookings?status=CONFIRMED", headers=auth(customer)).json()["total"] == 0
    assert client.get("/api/v1/bookings?status=BOGUS", headers=auth(customer)).status_code == 422


def test_admin_sweep_endpoint(client, auth, admin, customer):
    assert client.post("/api/v1/admin/bookings/expire-stale", headers=auth(customer)).status_code == 403
    resp = client.post("/api/v1/admin/bookings/expire-stale", headers=auth(admin))
    assert resp.status_code == 200
    assert resp.json() == {"expired": 0, "failed": 0, "skipped": 0, "bookingIds": []}


def test_creation_notifies_provider(client, auth, db, customer, provider, service, soon):
    booking_id = _create(client, auth, customer, provider, service, soon).json()["id"]
    note = db.query(Notification).filter(Notification.user_id == provider.user_id).one()
    assert json.loads(note.payload_json)["bookingId"] == booking_id


def test_provider_account_books_and_manages_over_http(client, auth, db, make_provider, provider, service, soon):
    shopper = db.get(User, make_provider().user_id)
    resp = _create(client, auth, shopper, provider, service, soon)
    assert resp.status_code == 201, resp.text
    booking_id = resp.json()["id"]

    assert client.get(f"/api/v1/bookings/{booking_id}", headers=auth(shopper)).status_code == 200
    listed = client.get("/api/v1/bookings", headers=auth(shopper)).json()
    assert [b["id"] for b in listed["data"]] == [booking_id]
    cancelled = client.post(f"/api/v1/bookings/{booking_id}/cancel", headers=auth(shopper))
    assert cancelled.status_code == 200, cancelled.text
    assert cancelled.json()["status"] == "CANCELLED"


def test_provider_cannot_book_own_service_over_http(client, auth, db, provider, service, soon):
    owner = db.get(User, provider.user_id)
    resp = _create(client, auth, owner, provider, service, soon)
    assert resp.status_code == 400
    assert resp.json()["code"] == "BookingValidationError"


def test_admin_sweep_rejects_negative_threshold(client, auth, admin):
    resp = client.post("/api/v1/admin/bookings/expire-stale?thresholdMinutes=-5", headers=auth(admin))
    assert resp.status_code == 422
    assert client.post("/api/v1/admin/bookings/expire-stale?thresholdMinutes=0", headers=auth(admin)).status_code == 200
