from decimal import Decimal
from sqlalchemy import String, Numeric
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from marketplace.db.session import Base
from marketplace.db.types import UTCDateTime, utcnow

PROVIDER_APPROVED = "APPROVED"

class Provider(Base):
    __tablename__ = "providers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)  # owning account
    business_name: Mapped[str] = mapped_column(String(200), default="")
    status: Mapped[str] = mapped_column(String(20), default="PENDING")  # PENDING, APPROVED, SUSPENDED, REJECTED
    qr_code_url: Mapped[str | None] = mapped_column(String(512), nullable=True)  # payment QR shown to customers
    phone: Mapped[str] = mapped_column(String(30), default="")
    total_revenue: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
