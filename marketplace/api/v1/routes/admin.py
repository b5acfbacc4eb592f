from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace.db.session import get_db
from marketplace.api.deps import require_roles
from marketplace.models.user import User
from marketplace.schemas.booking import SweepResultOut
from marketplace.services.expiry_service import expire_stale_bookings
from marketplace.services.transitions import ActorRole

router = APIRouter(tags=["admin"])

@router.post("/admin/bookings/expire-stale", response_model=SweepResultOut)
def admin_expire_stale(thresholdMinutes: int | None = Query(default=None, ge=0),
                       db: Session = Depends(get_db),
                       me: User = Depends(require_roles(ActorRole.ADMIN.value))):
    return expire_stale_bookings(db, threshold_minutes=thresholdMinutes)
