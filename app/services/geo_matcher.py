from __future__ import annotations

import math
import uuid
from typing import Any, Iterable

from sqlalchemy.orm import Session

from app.models.user import ROLE_TECHNICIAN, User
from app.models.work_request import WorkRequest
from app.services.work_status import ACTIVE_STATUSES

EARTH_RADIUS_KM = 6371.0

EMPLOYEE_STATUS_IN_WORK = "in work"
EMPLOYEE_STATUS_AVAILABLE = "available"


def normalize_specialization(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        parts: Iterable[Any] = raw.split(",")
    elif isinstance(raw, (list, tuple, set)):
        parts = raw
    else:
        parts = [raw]
    out: list[str] = []
    for part in parts:
        tag = str(part or "").strip().lower()
        if tag and tag not in out:
            out.append(tag)
    return out


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def busy_technician_ids(db: Session, technician_ids: Iterable[uuid.UUID] | None = None) -> set[uuid.UUID]:
    query = db.query(WorkRequest.assigned_technician_id).filter(
        WorkRequest.assigned_technician_id.is_not(None),
        WorkRequest.status.in_([status.value for status in ACTIVE_STATUSES]),
    )
    if technician_ids is not None:
        ids = list(technician_ids)
        if not ids:
            return set()
        query = query.filter(WorkRequest.assigned_technician_id.in_(ids))
    return {tech_id for (tech_id,) in query.distinct().all() if tech_id}


def technician_is_busy(db: Session, technician_id: uuid.UUID, *, exclude_work_id: uuid.UUID | None = None) -> bool:
    query = db.query(WorkRequest.id).filter(
        WorkRequest.assigned_technician_id == technician_id,
        WorkRequest.status.in_([status.value for status in ACTIVE_STATUSES]),
    )
    if exclude_work_id is not None:
        query = query.filter(WorkRequest.id != exclude_work_id)
    return query.first() is not None


def _specialization_matches(technician: User, required: set[str]) -> bool:
    if not required:
        return False
    offered = set(normalize_specialization(technician.specialization))
    return bool(offered & required)


def _candidate_pool(db: Session, required: set[str]) -> list[User]:
    rows = (
        db.query(User)
        .filter(User.role == ROLE_TECHNICIAN, User.is_active.is_(True))
        .order_by(User.name.asc(), User.id.asc())
        .all()
    )
    return [tech for tech in rows if _specialization_matches(tech, required)]


def serialize_candidate(technician: User, *, employee_status: str, distance_km: float | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": str(technician.id),
        "name": technician.name,
        "email": technician.email,
        "phone": technician.phone,
        "specialization": normalize_specialization(technician.specialization),
        "location": technician.location,
        "employeeStatus": employee_status,
    }
    if distance_km is not None:
        payload["coordinates"] = {"lat": technician.lat, "lng": technician.lng}
        payload["distanceKm"] = distance_km
    return payload


def match_by_distance(
    db: Session,
    *,
    specialization: Any,
    lat: float,
    lng: float,
    radius_km: float,
) -> list[dict[str, Any]]:
    required = set(normalize_specialization(specialization))
    in_range: list[tuple[float, User]] = []
    for tech in _candidate_pool(db, required):
        if tech.lat is None or tech.lng is None:
            continue
        distance = haversine_km(float(lat), float(lng), float(tech.lat), float(tech.lng))
        if distance <= float(radius_km):
            in_range.append((distance, tech))

    busy = busy_technician_ids(db, [tech.id for _, tech in in_range])
    in_range.sort(key=lambda item: (item[0], str(item[1].id)))
    return [
        serialize_candidate(
            tech,
            employee_status=EMPLOYEE_STATUS_IN_WORK if tech.id in busy else EMPLOYEE_STATUS_AVAILABLE,
            distance_km=round(distance, 2),
        )
        for distance, tech in in_range
    ]


def match_by_location_text(db: Session, *, specialization: Any, location: str) -> list[dict[str, Any]]:
    required = set(normalize_specialization(specialization))
    needle = str(location or "").strip().lower()
    if not needle:
        return []
    matched = [tech for tech in _candidate_pool(db, required) if needle in str(tech.location or "").lower()]
    busy = busy_technician_ids(db, [tech.id for tech in matched])
    return [
        serialize_candidate(
            tech,
            employee_status=EMPLOYEE_STATUS_IN_WORK if tech.id in busy else EMPLOYEE_STATUS_AVAILABLE,
        )
        for tech in matched
    ]
