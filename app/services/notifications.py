from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.models.admin_notification import AdminNotification
from app.models.notification import Notification
from app.models.user import ALLOWED_ROLES
from app.models.work_request import WorkRequest
from app.services import live_channel

_LOG = logging.getLogger(__name__)

SEVERITY_INFO = "info"
SEVERITY_SUCCESS = "success"
SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"
ALLOWED_SEVERITIES = {SEVERITY_INFO, SEVERITY_SUCCESS, SEVERITY_WARNING, SEVERITY_ERROR}

EVENT_STATUS = "STATUS"
EVENT_BILL = "BILL"
EVENT_PAYMENT = "PAYMENT"

ADMIN_EVENT_WORK_ISSUE = "work_issue"


def _as_utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_uuid_or_none(value: Any) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


@dataclass
class PendingNotification:
    recipient_id: uuid.UUID | str | None
    role: str
    title: str
    body: str | None = None
    severity: str = SEVERITY_INFO
    deep_link: str | None = None
    event_type: str = EVENT_STATUS
    payload: dict[str, Any] = field(default_factory=dict)


def client_link(work: WorkRequest) -> str:
    return f"/client/work/{work.id}"


def technician_link(work: WorkRequest) -> str:
    return f"/technician/work/{work.id}"


def _build_row(work: WorkRequest | None, item: PendingNotification) -> Notification | None:
    recipient = _as_uuid_or_none(item.recipient_id)
    role = str(item.role or "").strip().upper()
    if recipient is None or role not in ALLOWED_ROLES:
        return None
    severity = str(item.severity or "").strip().lower()
    payload = dict(item.payload or {})
    if work is not None:
        payload.setdefault("work_id", str(work.id))
        payload.setdefault("token", work.token)
        payload.setdefault("status", work.status)
    return Notification(
        work_id=work.id if work is not None else None,
        recipient_id=recipient,
        recipient_role=role,
        event_type=str(item.event_type or EVENT_STATUS).strip().upper(),
        title=str(item.title or "").strip()[:200] or "Update",
        body=str(item.body or "").strip() or None,
        severity=severity if severity in ALLOWED_SEVERITIES else SEVERITY_INFO,
        deep_link=str(item.deep_link or "").strip() or None,
        payload=payload,
        is_read=False,
        read_at=None,
    )


def dispatch_notifications(db: Session, work: WorkRequest | None, items: list[PendingNotification]) -> int:
    """Persist and broadcast notifications after the triggering transition committed.

    Runs in its own short transaction; any failure is logged and rolled back so
    delivery problems never reach the caller.
    """
    created: list[Notification] = []
    try:
        for item in items:
            row = _build_row(work, item)
            if row is None:
                continue
            db.add(row)
            created.append(row)
        if created:
            db.commit()
    except Exception:
        db.rollback()
        _LOG.exception("notification dispatch failed for work %s", getattr(work, "id", None))
        return 0

    for row in created:
        live_channel.publish(
            f"user:{row.recipient_id}",
            "notification",
            {"id": str(row.id), "title": row.title, "body": row.body, "severity": row.severity, "link": row.deep_link},
        )
    return len(created)


def file_work_issue(
    db: Session,
    *,
    work: WorkRequest,
    technician_id: uuid.UUID,
    technician_name: str | None,
    issue_type: str,
    remarks: str | None,
) -> AdminNotification:
    row = AdminNotification(
        type=ADMIN_EVENT_WORK_ISSUE,
        message=(
            f"Technician {technician_name or technician_id} reported an issue ({issue_type}) "
            f"for work {work.token}"
        ),
        work_id=work.id,
        technician_id=technician_id,
        issue_type=issue_type,
        remarks=remarks or "",
    )
    db.add(row)
    return row


def serialize_notification(row: Notification) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "work_id": str(row.work_id) if row.work_id else None,
        "recipient_id": str(row.recipient_id),
        "recipient_role": row.recipient_role,
        "event_type": row.event_type,
        "title": row.title,
        "body": row.body,
        "severity": row.severity,
        "deep_link": row.deep_link,
        "payload": row.payload or {},
        "is_read": bool(row.is_read),
        "read_at": row.read_at.isoformat() if row.read_at else None,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def serialize_admin_notification(row: AdminNotification, work: WorkRequest | None = None) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "type": row.type,
        "message": row.message,
        "work_id": str(row.work_id),
        "work": (
            {"token": work.token, "service_type": work.service_type, "status": work.status, "location": work.location}
            if work is not None
            else None
        ),
        "technician_id": str(row.technician_id),
        "issue_type": row.issue_type,
        "remarks": row.remarks,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def list_user_notifications(
    db: Session,
    *,
    user_id: str | uuid.UUID,
    unread_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Notification], int]:
    user_uuid = _as_uuid_or_none(user_id)
    if user_uuid is None:
        return [], 0
    query = db.query(Notification).filter(Notification.recipient_id == user_uuid)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    total = query.count()
    rows = (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(int(max(offset, 0)))
        .limit(int(min(max(limit, 1), 200)))
        .all()
    )
    return rows, int(total)


def mark_user_notifications_read(
    db: Session,
    *,
    user_id: str | uuid.UUID,
    notification_id: uuid.UUID | None = None,
) -> int:
    user_uuid = _as_uuid_or_none(user_id)
    if user_uuid is None:
        return 0
    query = db.query(Notification).filter(
        Notification.recipient_id == user_uuid,
        Notification.is_read.is_(False),
    )
    if notification_id is not None:
        query = query.filter(Notification.id == notification_id)
    rows = query.all()
    now = _as_utc_now()
    for row in rows:
        row.is_read = True
        row.read_at = now
        db.add(row)
    return len(rows)


def list_admin_notifications(db: Session, *, limit: int = 50, offset: int = 0) -> tuple[list[dict[str, Any]], int]:
    query = db.query(AdminNotification)
    total = query.count()
    rows = (
        query.order_by(AdminNotification.created_at.desc(), AdminNotification.id.desc())
        .offset(int(max(offset, 0)))
        .limit(int(min(max(limit, 1), 200)))
        .all()
    )
    work_ids = {row.work_id for row in rows}
    works = {}
    if work_ids:
        works = {work.id: work for work in db.query(WorkRequest).filter(WorkRequest.id.in_(work_ids)).all()}
    return [serialize_admin_notification(row, works.get(row.work_id)) for row in rows], int(total)
