import uuid, json
from sqlalchemy.orm import Session
from marketplace.models.notification import Notification

BOOKING_REQUEST = "BOOKING_REQUEST"
BOOKING_UPDATE = "BOOKING_UPDATE"
COMPLETION_OTP = "COMPLETION_OTP"
COMPLETION_INITIATED = "COMPLETION_INITIATED"


def create_notification(db: Session, user_id: str, type: str, title: str, body: str, payload: dict | None = None) -> Notification:
    """Stage a notification row on the caller's session.

    Nothing is committed here: the row lands or vanishes together with the
    state change it describes.
    """
    n = Notification(
        id=str(uuid.uuid4()),
        user_id=user_id,
        type=type,
        title=title,
        body=body,
        payload_json=json.dumps(payload or {}, ensure_ascii=False, default=str),
    )
    db.add(n)
    return n
