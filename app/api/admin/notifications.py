from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.deps import require_role
from app.db.session import get_db
from app.models.user import ROLE_ADMIN
from app.services.notifications import list_admin_notifications

router = APIRouter()


@router.get("")
def list_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    admin: dict = Depends(require_role(ROLE_ADMIN)),
):
    rows, total = list_admin_notifications(db, limit=limit, offset=offset)
    return {"notifications": rows, "count": len(rows), "total": total}
