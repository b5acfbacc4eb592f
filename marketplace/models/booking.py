import enum
from decimal import Decimal
from sqlalchemy import String, Numeric, Text, Index, text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from marketplace.db.session import Base
from marketplace.db.types import UTCDateTime, utcnow


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


ACTIVE_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value, BookingStatus.IN_PROGRESS.value)
TERMINAL_STATUSES = frozenset({
    BookingStatus.COMPLETED.value,
    BookingStatus.CANCELLED.value,
    BookingStatus.REJECTED.value,
    BookingStatus.EXPIRED.value,
})

_ACTIVE_SQL = text("status IN ('PENDING', 'CONFIRMED', 'IN_PROGRESS')")
_IN_PROGRESS_SQL = text("status = 'IN_PROGRESS'")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        # One active booking per (customer, service); enforced by the database so racing inserts cannot both land.
        Index(
            "uq_bookings_active_customer_service",
            "customer_id", "service_id",
            unique=True,
            postgresql_where=_ACTIVE_SQL,
            sqlite_where=_ACTIVE_SQL,
        ),
        # A provider works one job at a time.
        Index(
            "uq_bookings_provider_in_progress",
            "provider_id",
            unique=True,
            postgresql_where=_IN_PROGRESS_SQL,
            sqlite_where=_IN_PROGRESS_SQL,
        ),
        Index("ix_bookings_status_created_at", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    customer_id: Mapped[str] = mapped_column(String(36), index=True)
    provider_id: Mapped[str] = mapped_column(String(36), index=True)
    service_id: Mapped[str] = mapped_column(String(36), index=True)

    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime, index=True)

    # Snapshotted at creation, never recomputed: platform_fee + provider_earnings == total_amount
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    provider_earnings: Mapped[Decimal] = mapped_column(Numeric(12, 2))

    status: Mapped[str] = mapped_column(String(20), default=BookingStatus.PENDING.value)
    payment_status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.PENDING.value)

    # Customer-only secret; set between completion initiation and verification
    completion_code: Mapped[str | None] = mapped_column(String(6), nullable=True)

    address: Mapped[str] = mapped_column(String(500), default="")
    city: Mapped[str] = mapped_column(String(120), default="")
    pincode: Mapped[str] = mapped_column(String(12), default="")
    requirements: Mapped[str] = mapped_column(Text, default="")

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
