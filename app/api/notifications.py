from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.deps import get_current_principal
from app.db.session import get_db
from app.schemas.works import NotificationsReadPayload
from app.services.notifications import list_user_notifications, mark_user_notifications_read, serialize_notification
from app.services.work_access import uuid_or_400

router = APIRouter()


@router.get("")
def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    principal: dict = Depends(get_current_principal),
):
    rows, total = list_user_notifications(
        db,
        user_id=principal.get("sub"),
        unread_only=unread_only,
        limit=limit,
        offset=offset,
    )
    return {"rows": [serialize_notification(row) for row in rows], "total": total}


@router.post("/read")
def read_notifications(
    payload: NotificationsReadPayload,
    db: Session = Depends(get_db),
    principal: dict = Depends(get_current_principal),
):
    notification_id = uuid_or_400(payload.notification_id, field="notification_id") if payload.notification_id else None
    changed = mark_user_notifications_read(db, user_id=principal.get("sub"), notification_id=notification_id)
    db.commit()
    return {"status": "ok", "changed": changed}
