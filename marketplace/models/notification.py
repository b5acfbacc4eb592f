from sqlalchemy import String, Boolean, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from marketplace.db.session import Base
from marketplace.db.types import UTCDateTime, utcnow

class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)  # recipient
    type: Mapped[str] = mapped_column(String(40), index=True)  # BOOKING_REQUEST, BOOKING_UPDATE, COMPLETION_OTP, COMPLETION_INITIATED
    title: Mapped[str] = mapped_column(String(200))
    body: Mapped[str] = mapped_column(Text, default="")
    payload_json: Mapped[str] = mapped_column(Text, default="{}")
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
