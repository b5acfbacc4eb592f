"""
Shared fixtures: an in-memory SQLite database rebuilt per test, factories for
the collaborator entities, a recording event emitter and an authenticated
TestClient.
"""
import os

# Settings are read at import time; point them at a throwaway database first.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EVENT_BACKEND"] = "log"
os.environ["COMPLETION_CODE_BACKEND"] = "booking"
# Round-the-clock hours so relative schedule fixtures never fall outside them
os.environ["SERVICE_HOURS_START"] = "0"
os.environ["SERVICE_HOURS_END"] = "24"

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketplace.api.deps import get_session_factory
from marketplace.core.security import create_access_token
from marketplace.db.session import Base, get_db
from marketplace.main import app
from marketplace.models.audit_log import AuditLog  # noqa: F401
from marketplace.models.booking import Booking  # noqa: F401
from marketplace.models.cancellation import BookingCancellation  # noqa: F401
from marketplace.models.notification import Notification  # noqa: F401
from marketplace.models.provider import Provider, PROVIDER_APPROVED
from marketplace.models.service import Service
from marketplace.models.user import User

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class RecordingEmitter:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def emit(self, topic: str, payload: dict) -> None:
        self.events.append((topic, payload))

    def for_user(self, user_id: str) -> list[tuple[str, dict]]:
        return [(t, p) for t, p in self.events if p.get("userId") == user_id]


class FailingEmitter:
    def __init__(self):
        self.calls = 0

    def emit(self, topic: str, payload: dict) -> None:
        self.calls += 1
        raise ConnectionError("push gateway unreachable")


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def emitter():
    return RecordingEmitter()


@pytest.fixture()
def failing_emitter():
    return FailingEmitter()


@pytest.fixture()
def make_user(db):
    def _make(role: str = "CUSTOMER", is_active: bool = True, full_name: str = "Test User") -> User:
        user_id = str(uuid.uuid4())
        user = User(
            id=user_id,
            email=f"{user_id[:8]}@example.com",
            full_name=full_name,
            role=role,
            is_active=is_active,
            total_spending=Decimal("0"),
        )
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture()
def make_provider(db, make_user):
    def _make(status: str = PROVIDER_APPROVED, owner_active: bool = True) -> Provider:
        owner = make_user(role="PROVIDER", is_active=owner_active, full_name="Pat Plumber")
        provider = Provider(
            id=str(uuid.uuid4()),
            user_id=owner.id,
            business_name="Pat's Plumbing",
            status=status,
            qr_code_url="https://pay.example.com/qr/pat.png",
            phone="+15550100",
            total_revenue=Decimal("0"),
        )
        db.add(provider)
        db.commit()
        return provider
    return _make


@pytest.fixture()
def make_service(db):
    def _make(provider: Provider, price: str = "1000", name: str = "Pipe repair", is_active: bool = True) -> Service:
        service = Service(
            id=str(uuid.uuid4()),
            provider_id=provider.id,
            name=name,
            base_price=Decimal(price),
            is_active=is_active,
        )
        db.add(service)
        db.commit()
        return service
    return _make


@pytest.fixture()
def customer(make_user):
    return make_user(role="CUSTOMER", full_name="Casey Customer")


@pytest.fixture()
def admin(make_user):
    return make_user(role="ADMIN", full_name="Ada Admin")


@pytest.fixture()
def provider(make_provider):
    return make_provider()


@pytest.fixture()
def service(make_service, provider):
    return make_service(provider)


@pytest.fixture()
def soon():
    """A schedule slot two hours out, inside the booking horizon."""
    return datetime.now(timezone.utc) + timedelta(hours=2)


@pytest.fixture()
def session_factory(db):
    return TestingSessionLocal


@pytest.fixture()
def client(db):
    def _get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def auth():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}
    return _headers
