from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from app.core.errors import ForbiddenError, InvalidInputError, InvalidStateError, NotFoundError
from app.models.user import ROLE_ADMIN, ROLE_CLIENT, ROLE_TECHNICIAN, User
from app.models.work_request import WorkRequest
from app.services.work_status import ACTIVE_STATUSES


def actor_uuid_or_401(actor: dict[str, Any]) -> uuid.UUID:
    try:
        return uuid.UUID(str((actor or {}).get("sub") or ""))
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid token subject") from exc


def actor_role(actor: dict[str, Any]) -> str:
    return str((actor or {}).get("role") or "").strip().upper()


def uuid_or_400(raw: Any, *, field: str) -> uuid.UUID:
    if isinstance(raw, uuid.UUID):
        return raw
    try:
        return uuid.UUID(str(raw or "").strip())
    except ValueError as exc:
        raise InvalidInputError(f'Field "{field}" must be a valid id') from exc


def get_work_or_404(db: Session, work_id: Any) -> WorkRequest:
    work = db.get(WorkRequest, uuid_or_400(work_id, field="work_id"))
    if work is None:
        raise NotFoundError("Work not found")
    return work


def get_user_or_404(db: Session, user_id: Any, *, role: str, label: str) -> User:
    user = db.get(User, uuid_or_400(user_id, field=f"{label.lower()}_id"))
    if user is None or str(user.role or "").upper() != role:
        raise NotFoundError(f"{label} not found")
    return user


def active_technician_or_403(db: Session, actor: dict[str, Any]) -> User:
    tech = db.get(User, actor_uuid_or_401(actor))
    if tech is None or str(tech.role or "").upper() != ROLE_TECHNICIAN or not bool(tech.is_active):
        raise ForbiddenError("Only an active technician can perform this action")
    return tech


def client_or_404(db: Session, actor: dict[str, Any]) -> User:
    client = db.get(User, actor_uuid_or_401(actor))
    if client is None or str(client.role or "").upper() != ROLE_CLIENT:
        raise NotFoundError("Client not found")
    return client


def ensure_assigned_technician_or_403(work: WorkRequest, technician_id: uuid.UUID) -> None:
    if work.assigned_technician_id is None or work.assigned_technician_id != technician_id:
        raise ForbiddenError("You are not assigned to this work")


def ensure_owner_or_403(work: WorkRequest, client_id: uuid.UUID) -> None:
    if work.client_id != client_id:
        raise ForbiddenError("Not authorized to access this work")


def ensure_participant_or_403(work: WorkRequest, actor: dict[str, Any]) -> str:
    """Return the actor's relation to the work: ``technician``, ``client`` or ``admin``."""
    actor_id = actor_uuid_or_401(actor)
    role = actor_role(actor)
    if role == ROLE_ADMIN:
        return "admin"
    if role == ROLE_TECHNICIAN and work.assigned_technician_id == actor_id:
        return "technician"
    if role == ROLE_CLIENT and work.client_id == actor_id:
        return "client"
    raise ForbiddenError("Not authorized to access this work")


def explain_guard_failure(db: Session, work_id: uuid.UUID, *, technician_id: uuid.UUID | None = None) -> HTTPException:
    """Build the error for a conditional update that matched no row."""
    db.expire_all()
    work = db.get(WorkRequest, work_id)
    if work is None:
        return NotFoundError("Work not found")
    if technician_id is not None and work.assigned_technician_id not in (None, technician_id):
        return ForbiddenError("You are not assigned to this work")
    return InvalidStateError("Work changed state concurrently", current_status=work.status)


def no_other_active_work(technician_id: uuid.UUID, *, exclude_work_id: uuid.UUID):
    """SQL predicate: the technician holds no active work other than ``exclude_work_id``."""
    other = aliased(WorkRequest)
    return ~(
        select(other.id)
        .where(
            other.assigned_technician_id == technician_id,
            other.status.in_([status.value for status in ACTIVE_STATUSES]),
            other.id != exclude_work_id,
        )
        .exists()
    )


def validate_coordinates(lat: Any, lng: Any) -> tuple[float, float]:
    if lat is None or lng is None or lat == "" or lng == "":
        raise InvalidInputError("Coordinates are required")
    try:
        lat_value = float(lat)
        lng_value = float(lng)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError("Coordinates must be numbers") from exc
    if not -90.0 <= lat_value <= 90.0 or not -180.0 <= lng_value <= 180.0:
        raise InvalidInputError("Coordinates are out of range")
    return lat_value, lng_value


def parse_client_date(raw: Any) -> date | None:
    """Parse ``D-M-YYYY`` / ``D/M/YYYY`` (the client format) or ISO ``YYYY-MM-DD``."""
    value = str(raw or "").strip()
    if not value:
        return None
    value = value.replace("/", "-")
    parts = value.split("-")
    if len(parts) != 3 or not all(part.strip().isdigit() for part in parts):
        raise InvalidInputError("Invalid date format (DD-MM-YYYY)")
    first, second, third = (part.strip() for part in parts)
    try:
        if len(first) == 4:
            return date(int(first), int(second), int(third))
        return date(int(third), int(second), int(first))
    except ValueError as exc:
        raise InvalidInputError("Invalid date format (DD-MM-YYYY)") from exc


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _money(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, Decimal):
        return float(value)
    return float(value)


def serialize_work(work: WorkRequest) -> dict[str, Any]:
    return {
        "id": str(work.id),
        "token": work.token,
        "client": str(work.client_id),
        "assignedTechnician": str(work.assigned_technician_id) if work.assigned_technician_id else None,
        "bookingId": str(work.booking_id) if work.booking_id else None,
        "serviceType": work.service_type,
        "specialization": list(work.specialization or []),
        "description": work.description,
        "location": work.location,
        "coordinates": {"lat": work.lat, "lng": work.lng} if work.lat is not None and work.lng is not None else None,
        "date": _iso(work.scheduled_date),
        "formattedDate": work.scheduled_date.strftime("%d-%m-%Y") if work.scheduled_date else None,
        "time": work.scheduled_time,
        "status": work.status,
        "serviceCharge": _money(work.service_charge),
        "payment": dict(work.payment or {}),
        "beforePhoto": work.before_photo,
        "afterPhoto": work.after_photo,
        "billId": str(work.bill_id) if work.bill_id else None,
        "selectedRouteIndex": work.selected_route_index,
        "remarks": work.remarks,
        "createdAt": _iso(work.created_at),
        "startedAt": _iso(work.started_at),
        "completedAt": _iso(work.completed_at),
    }
