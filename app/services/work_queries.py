from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.core.errors import InvalidInputError, NotFoundError, UpstreamError
from app.models.bill import Bill
from app.models.user import User
from app.models.work_request import WorkRequest
from app.services.geo_matcher import normalize_specialization
from app.services.routing import RoutingUnavailable, estimate_eta_minutes, get_routes, navigation_url
from app.services.work_access import (
    active_technician_or_403,
    client_or_404,
    ensure_owner_or_403,
    ensure_participant_or_403,
    get_work_or_404,
    serialize_work,
)
from app.services.work_status import ON_HOLD_STATUSES, WorkStatus

_LOG = logging.getLogger(__name__)

SUMMARY_BUCKETS: dict[str, set[str]] = {
    "completed": {WorkStatus.COMPLETED.value},
    "inProgress": {WorkStatus.INPROGRESS.value, WorkStatus.CONFIRM.value},
    "upcoming": {
        WorkStatus.OPEN.value,
        WorkStatus.TAKEN.value,
        WorkStatus.APPROVED.value,
        WorkStatus.DISPATCH.value,
    },
    "onHold": {status.value for status in ON_HOLD_STATUSES},
}
EARNING_STATUSES = {WorkStatus.COMPLETED.value, WorkStatus.CONFIRM.value}
ETA_UNAVAILABLE = "ETA not available"


def _has_coordinates(obj: Any) -> bool:
    return getattr(obj, "lat", None) is not None and getattr(obj, "lng", None) is not None


def _contact(user: User | None) -> dict[str, Any] | None:
    if user is None:
        return None
    return {"id": str(user.id), "name": user.name, "phone": user.phone, "email": user.email}


def list_available_jobs(db: Session, actor: dict[str, Any]) -> list[dict[str, Any]]:
    """Open works that share a specialization tag with the technician and match their location text."""
    technician = active_technician_or_403(db, actor)
    offered = set(normalize_specialization(technician.specialization))
    if not offered:
        return []
    needle = str(technician.location or "").strip().lower()
    rows = (
        db.query(WorkRequest)
        .filter(WorkRequest.status == WorkStatus.OPEN.value)
        .order_by(WorkRequest.created_at.desc(), WorkRequest.id.asc())
        .all()
    )
    jobs = []
    for work in rows:
        if not offered & set(normalize_specialization(work.specialization)):
            continue
        if needle and needle not in str(work.location or "").lower():
            continue
        jobs.append(serialize_work(work))
    return jobs


def get_client_work_status(db: Session, actor: dict[str, Any], work_id: str) -> dict[str, Any]:
    client = client_or_404(db, actor)
    work = get_work_or_404(db, work_id)
    ensure_owner_or_403(work, client.id)
    technician = db.get(User, work.assigned_technician_id) if work.assigned_technician_id else None

    eta = ETA_UNAVAILABLE
    if technician is not None and _has_coordinates(technician) and _has_coordinates(work):
        estimate = estimate_eta_minutes((technician.lat, technician.lng), (work.lat, work.lng))
        if estimate and estimate.get("eta_minutes") is not None:
            eta = f"{estimate['eta_minutes']} minutes"

    status = serialize_work(work)
    status["client"] = _contact(client)
    status["technician"] = None
    if technician is not None:
        status["technician"] = {
            **_contact(technician),
            "status": technician.duty_status,
            "coordinates": {"lat": technician.lat, "lng": technician.lng} if _has_coordinates(technician) else None,
            "lastUpdate": technician.last_location_update.isoformat() if technician.last_location_update else None,
        }
    status["eta"] = eta
    return status


def _endpoints_or_4xx(db: Session, work: WorkRequest) -> tuple[User, tuple[float, float], tuple[float, float]]:
    technician = db.get(User, work.assigned_technician_id) if work.assigned_technician_id else None
    if technician is None:
        raise NotFoundError("Technician not assigned yet")
    if not _has_coordinates(technician):
        raise InvalidInputError("Technician location missing")
    if _has_coordinates(work):
        destination = (work.lat, work.lng)
    else:
        client = db.get(User, work.client_id)
        if client is None or not _has_coordinates(client):
            raise InvalidInputError("Work location missing")
        destination = (client.lat, client.lng)
    return technician, (technician.lat, technician.lng), destination


def track_technician(db: Session, actor: dict[str, Any], work_id: str) -> dict[str, Any]:
    """Live position, ETA and route line for a work; map failures degrade to empty fields."""
    work = get_work_or_404(db, work_id)
    ensure_participant_or_403(work, actor)
    technician, origin, destination = _endpoints_or_4xx(db, work)

    estimate = estimate_eta_minutes(origin, destination) or {}
    polyline = None
    try:
        routes = get_routes(origin, destination)
    except RoutingUnavailable as exc:
        _LOG.warning("route line unavailable for work %s: %s", work.id, exc)
        routes = []
    if routes:
        index = work.selected_route_index if work.selected_route_index is not None else 0
        polyline = routes[index if 0 <= index < len(routes) else 0]["polyline"]

    eta_minutes = estimate.get("eta_minutes")
    return {
        "technician": {
            "name": technician.name,
            "coordinates": {"lat": origin[0], "lng": origin[1]},
            "lastUpdate": technician.last_location_update.isoformat() if technician.last_location_update else None,
            "liveStatus": work.status,
        },
        "destination": {"lat": destination[0], "lng": destination[1]},
        "eta": f"{eta_minutes} minutes" if eta_minutes is not None else ETA_UNAVAILABLE,
        "distance": estimate.get("distance_text") or "Unknown",
        "routePolyline": polyline,
        "navigateUrl": navigation_url(origin, destination),
    }


def list_routes_for_work(db: Session, actor: dict[str, Any], work_id: str) -> dict[str, Any]:
    work = get_work_or_404(db, work_id)
    ensure_participant_or_403(work, actor)
    _technician, origin, destination = _endpoints_or_4xx(db, work)
    try:
        routes = get_routes(origin, destination)
    except RoutingUnavailable as exc:
        raise UpstreamError("Routing service unavailable") from exc
    return {"routes": routes, "selectedRouteIndex": work.selected_route_index}


def technician_summary(db: Session, actor: dict[str, Any]) -> dict[str, Any]:
    technician = active_technician_or_403(db, actor)
    works = (
        db.query(WorkRequest)
        .filter(WorkRequest.assigned_technician_id == technician.id)
        .order_by(WorkRequest.created_at.desc(), WorkRequest.id.asc())
        .all()
    )
    data: dict[str, list[dict[str, Any]]] = {bucket: [] for bucket in SUMMARY_BUCKETS}
    for work in works:
        for bucket, statuses in SUMMARY_BUCKETS.items():
            if work.status in statuses:
                data[bucket].append(serialize_work(work))
                break

    bill_ids = [work.bill_id for work in works if work.bill_id is not None and work.status in EARNING_STATUSES]
    earnings = Decimal("0")
    if bill_ids:
        for (amount,) in db.query(Bill.total_amount).filter(Bill.id.in_(bill_ids)).all():
            earnings += Decimal(str(amount or 0))

    summary: dict[str, Any] = {"total": len(works)}
    summary.update({bucket: len(rows) for bucket, rows in data.items()})
    summary["totalEarnings"] = float(earnings)
    return {"technicianId": str(technician.id), "summary": summary, "data": data}
