import uuid, json
from sqlalchemy.orm import Session
from marketplace.models.audit_log import AuditLog

SYSTEM_ACTOR = "system"

def log_audit(db: Session, actor_user_id: str, action: str, entity_type: str, entity_id: str, details: dict | None = None):
    db.add(AuditLog(
        id=str(uuid.uuid4()),
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details_json=json.dumps(details or {}, ensure_ascii=False, default=str),
    ))

def log_status_change(db: Session, actor_user_id: str, booking_id: str, from_status: str, to_status: str, reason: str | None = None):
    log_audit(db, actor_user_id, "booking.status_changed", "booking", booking_id, {
        "from": from_status,
        "to": to_status,
        "reason": reason,
    })

def status_history(db: Session, booking_id: str) -> list[dict]:
    """Transition timestamps for a booking, oldest first."""
    rows = (
        db.query(AuditLog)
        .filter(
            AuditLog.entity_type == "booking",
            AuditLog.entity_id == booking_id,
            AuditLog.action == "booking.status_changed",
        )
        .order_by(AuditLog.created_at.asc())
        .all()
    )
    history = []
    for r in rows:
        details = json.loads(r.details_json or "{}")
        history.append({
            "from": details.get("from"),
            "to": details.get("to"),
            "reason": details.get("reason"),
            "actorUserId": r.actor_user_id,
            "at": r.created_at.isoformat() if r.created_at else None,
        })
    return history
