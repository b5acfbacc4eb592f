from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from marketplace.db.session import Base
from marketplace.db.types import UTCDateTime, utcnow

class BookingCancellation(Base):
    __tablename__ = "booking_cancellations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)
    cancelled_by: Mapped[str] = mapped_column(String(36), index=True)  # user id of the canceller
    reason: Mapped[str] = mapped_column(String(500), default="")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
