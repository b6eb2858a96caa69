from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ConflictError, ForbiddenError, InvalidInputError, InvalidStateError, NotFoundError
from app.models.user import ROLE_ADMIN, ROLE_CLIENT, ROLE_TECHNICIAN, User
from app.models.work_request import WorkRequest
from app.schemas.works import IssueReport, LocationUpdate, ResumeWork, RouteSelect, WorkCreate, WorkMatchCreate, WorkStart
from app.services import live_channel
from app.services.booking_ledger import apply_booking
from app.services.geo_matcher import (
    match_by_distance,
    match_by_location_text,
    normalize_specialization,
    technician_is_busy,
)
from app.services.geocoding import resolve_address
from app.services.notifications import (
    PendingNotification,
    SEVERITY_SUCCESS,
    SEVERITY_WARNING,
    client_link,
    dispatch_notifications,
    file_work_issue,
    technician_link,
)
from app.services.s3_storage import BEFORE_PHOTO_FOLDER
from app.services.work_access import (
    active_technician_or_403,
    actor_role,
    actor_uuid_or_401,
    client_or_404,
    ensure_assigned_technician_or_403,
    ensure_participant_or_403,
    get_user_or_404,
    get_work_or_404,
    no_other_active_work,
    parse_client_date,
    serialize_work,
    validate_coordinates,
)
from app.services.work_photos import upload_work_photo
from app.services.work_status import (
    ISSUE_DEFAULT_REMARKS,
    ISSUE_STATUS,
    ON_HOLD_STATUSES,
    WorkStatus,
    register_status_history,
)
from app.services.work_tokens import next_work_token
from app.services.work_transitions import guarded_transition

_LOG = logging.getLogger(__name__)

START_SOURCES = (WorkStatus.TAKEN, WorkStatus.APPROVED, WorkStatus.DISPATCH)
DISPATCH_SOURCES = (WorkStatus.TAKEN, WorkStatus.APPROVED)
TRACKED_STATUSES = (WorkStatus.TAKEN, WorkStatus.APPROVED, WorkStatus.DISPATCH, WorkStatus.INPROGRESS)

DUTY_APPROVED = "approved"
DUTY_IN_PROGRESS = "inprogress"
DUTY_PENDING = "pending"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _set_duty(db: Session, technician_id, *, duty_status: str, on_duty: bool = True) -> None:
    db.execute(
        update(User)
        .where(User.id == technician_id)
        .values(duty_status=duty_status, on_duty=on_duty)
        .execution_options(synchronize_session=False)
    )


def _publish_status(work: WorkRequest) -> None:
    live_channel.publish(
        live_channel.work_channel(work.id),
        "status",
        {"work_id": str(work.id), "token": work.token, "status": work.status},
    )


def _coordinates_or_400(coordinates) -> tuple[float, float]:
    return validate_coordinates(
        coordinates.lat if coordinates is not None else None,
        coordinates.lng if coordinates is not None else None,
    )


def create_work(db: Session, actor: dict[str, Any], payload: WorkCreate) -> dict[str, Any]:
    client = client_or_404(db, actor)
    service_type = str(payload.service_type or "").strip()
    specialization = normalize_specialization(payload.specialization)
    if not service_type or not specialization:
        raise InvalidInputError("Service type and specialization are required")
    lat, lng = _coordinates_or_400(payload.coordinates)
    scheduled_date = parse_client_date(payload.date)
    scheduled_time = str(payload.time or "").strip() or None
    technician = None
    if payload.technician_id:
        technician = get_user_or_404(db, payload.technician_id, role=ROLE_TECHNICIAN, label="Technician")
        if not technician.is_active:
            raise NotFoundError("Technician not found")

    location = resolve_address(lat, lng)
    try:
        work = WorkRequest(
            token=next_work_token(db),
            client_id=client.id,
            service_type=service_type,
            specialization=specialization,
            description=payload.description,
            location=location,
            lat=lat,
            lng=lng,
            scheduled_date=scheduled_date,
            scheduled_time=scheduled_time,
            status=WorkStatus.OPEN.value,
            service_charge=payload.service_charge if payload.service_charge is not None else Decimal("0"),
            payment={},
        )
        db.add(work)
        db.flush()
        register_status_history(
            db, work_id=work.id, from_status=None, to_status=WorkStatus.OPEN, actor=actor, comment="Work created"
        )
        if technician is not None:
            apply_booking(
                db,
                work=work,
                technician=technician,
                client_id=client.id,
                actor=actor,
                lat=lat,
                lng=lng,
                location=location,
                scheduled_date=scheduled_date,
                scheduled_time=scheduled_time,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(work)
    _LOG.info("work %s created by client %s with status %s", work.token, client.id, work.status)
    candidates = match_by_distance(
        db,
        specialization=specialization,
        lat=lat,
        lng=lng,
        radius_km=settings.MATCH_RADIUS_KM,
    )
    result = {"work": serialize_work(work), "matchingTechnicians": candidates}
    if technician is not None:
        dispatch_notifications(
            db,
            work,
            [
                PendingNotification(
                    recipient_id=technician.id,
                    role=ROLE_TECHNICIAN,
                    title="New booking",
                    body=f"{client.name} booked you for {service_type} ({result['work']['token']})",
                    deep_link=technician_link(work),
                )
            ],
        )
    return result


def find_matching_technicians(db: Session, actor: dict[str, Any], payload: WorkMatchCreate) -> dict[str, Any]:
    client = client_or_404(db, actor)
    specialization = normalize_specialization(payload.specialization)
    location = re.sub(r"\s+", " ", str(payload.location or "")).strip().lower()
    if not specialization or not location or not str(payload.date or "").strip():
        raise InvalidInputError("Specialization, location, and date required")
    scheduled_date = parse_client_date(payload.date)
    service_type = str(payload.service_type or "").strip() or specialization[0]

    try:
        work = WorkRequest(
            token=next_work_token(db),
            client_id=client.id,
            service_type=service_type,
            specialization=specialization,
            description=payload.description,
            location=location,
            scheduled_date=scheduled_date,
            scheduled_time=str(payload.time or "").strip() or None,
            status=WorkStatus.OPEN.value,
            service_charge=Decimal("0"),
            payment={},
        )
        db.add(work)
        db.flush()
        register_status_history(
            db, work_id=work.id, from_status=None, to_status=WorkStatus.OPEN, actor=actor, comment="Work created"
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(work)
    candidates = match_by_location_text(db, specialization=specialization, location=location)
    return {"work": serialize_work(work), "matchingTechnicians": candidates}


def approve_work(db: Session, actor: dict[str, Any], work_id: str) -> dict[str, Any]:
    technician = active_technician_or_403(db, actor)
    work = get_work_or_404(db, work_id)
    if technician_is_busy(db, technician.id, exclude_work_id=work.id):
        raise ConflictError("Technician already has an active work")

    try:
        approved = guarded_transition(
            db,
            work,
            WorkStatus.APPROVED,
            actor=actor,
            from_statuses=[WorkStatus.OPEN],
            where=(no_other_active_work(technician.id, exclude_work_id=work.id),),
            values={"assigned_technician_id": technician.id},
            comment=f"Approved by {technician.name}",
            strict=False,
        )
        if not approved:
            if technician_is_busy(db, technician.id, exclude_work_id=work.id):
                raise ConflictError("Technician already has an active work")
            db.expire_all()
            current = db.get(WorkRequest, work.id)
            raise InvalidStateError(
                "Work already assigned or in progress",
                current_status=current.status if current is not None else None,
            )

        swept = (
            db.execute(
                update(WorkRequest)
                .where(
                    WorkRequest.id != work.id,
                    WorkRequest.status == WorkStatus.OPEN.value,
                    func.lower(WorkRequest.service_type) == str(work.service_type or "").strip().lower(),
                )
                .values(status=WorkStatus.UNAVAILABLE.value)
                .returning(WorkRequest.id)
                .execution_options(synchronize_session=False)
            )
            .scalars()
            .all()
        )
        for swept_id in swept:
            register_status_history(
                db,
                work_id=swept_id,
                from_status=WorkStatus.OPEN,
                to_status=WorkStatus.UNAVAILABLE,
                actor=actor,
                comment=f"Service type reserved by work {work.token}",
            )
        _set_duty(db, technician.id, duty_status=DUTY_APPROVED)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(work)
    _LOG.info("work %s approved by technician %s, %s sibling(s) marked unavailable", work.token, technician.id, len(swept))
    result = {"work": serialize_work(work), "unavailable": [str(item) for item in swept]}
    dispatch_notifications(
        db,
        work,
        [
            PendingNotification(
                recipient_id=technician.id,
                role=ROLE_TECHNICIAN,
                title="Work approved",
                body=f"You have approved the work request ({work.service_type}).",
                severity=SEVERITY_SUCCESS,
                deep_link=technician_link(work),
            ),
            PendingNotification(
                recipient_id=work.client_id,
                role=ROLE_CLIENT,
                title="Technician assigned",
                body=f"Your work request for {work.service_type} has been accepted by a technician.",
                deep_link=client_link(work),
            ),
        ],
    )
    _publish_status(work)
    return result


def update_location(db: Session, actor: dict[str, Any], payload: LocationUpdate) -> dict[str, Any]:
    """Store the technician's live position; the first update on an approved work dispatches it."""
    technician = active_technician_or_403(db, actor)
    lat, lng = validate_coordinates(payload.lat, payload.lng)
    work = (
        db.query(WorkRequest)
        .filter(
            WorkRequest.assigned_technician_id == technician.id,
            WorkRequest.status.in_([status.value for status in TRACKED_STATUSES]),
        )
        .order_by(WorkRequest.updated_at.desc())
        .first()
    )
    if work is None:
        raise ForbiddenError("No active approved work found for this technician")

    now = _now()
    try:
        dispatched = guarded_transition(
            db,
            work,
            WorkStatus.DISPATCH,
            actor=actor,
            from_statuses=DISPATCH_SOURCES,
            where=(WorkRequest.assigned_technician_id == technician.id,),
            comment="First location update",
            strict=False,
        )
        db.execute(
            update(User)
            .where(User.id == technician.id)
            .values(lat=lat, lng=lng, last_location_update=now, on_duty=True)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(work)
    event = {
        "technicianId": str(technician.id),
        "lat": lat,
        "lng": lng,
        "status": work.status,
        "updatedAt": now.isoformat(),
    }
    live_channel.publish(live_channel.work_channel(work.id), "locationUpdate", event)
    live_channel.publish(live_channel.technician_channel(technician.id), "locationUpdate", event)
    if dispatched:
        dispatch_notifications(
            db,
            work,
            [
                PendingNotification(
                    recipient_id=work.client_id,
                    role=ROLE_CLIENT,
                    title="Technician on the way",
                    body=f"Your technician is heading to you for {work.token}.",
                    deep_link=client_link(work),
                )
            ],
        )
    return {"workId": str(work.id), "workStatus": work.status, "coordinates": {"lat": lat, "lng": lng}, "updatedAt": now.isoformat()}


def start_work(db: Session, actor: dict[str, Any], work_id: str, payload: WorkStart) -> dict[str, Any]:
    technician = active_technician_or_403(db, actor)
    work = get_work_or_404(db, work_id)
    ensure_assigned_technician_or_403(work, technician.id)
    if work.status not in {status.value for status in START_SOURCES}:
        raise InvalidStateError("Work cannot be started from its current status", current_status=work.status)

    photo_url = upload_work_photo(payload.before_photo, folder=BEFORE_PHOTO_FOLDER)
    values: dict[str, Any] = {"started_at": _now()}
    if photo_url:
        values["before_photo"] = photo_url
    try:
        guarded_transition(
            db,
            work,
            WorkStatus.INPROGRESS,
            actor=actor,
            from_statuses=START_SOURCES,
            where=(WorkRequest.assigned_technician_id == technician.id,),
            values=values,
            comment="Work started",
            technician_id=technician.id,
        )
        _set_duty(db, technician.id, duty_status=DUTY_IN_PROGRESS)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(work)
    result = {"work": serialize_work(work), "beforePhoto": photo_url}
    dispatch_notifications(
        db,
        work,
        [
            PendingNotification(
                recipient_id=work.client_id,
                role=ROLE_CLIENT,
                title="Work in progress",
                body=f"Your job ({work.service_type}) has been marked as in-progress.",
                deep_link=client_link(work),
            )
        ],
    )
    _publish_status(work)
    return result


def report_issue(db: Session, actor: dict[str, Any], work_id: str, payload: IssueReport) -> dict[str, Any]:
    issue_type = str(payload.issue_type or "").strip().lower()
    if not issue_type:
        raise InvalidInputError("Issue type is required")
    target = ISSUE_STATUS.get(issue_type)
    if target is None:
        raise InvalidInputError("Invalid issue type")
    technician = active_technician_or_403(db, actor)
    work = get_work_or_404(db, work_id)
    ensure_assigned_technician_or_403(work, technician.id)

    remarks = payload.remarks if payload.remarks else ISSUE_DEFAULT_REMARKS[issue_type]
    try:
        guarded_transition(
            db,
            work,
            target,
            actor=actor,
            where=(WorkRequest.assigned_technician_id == technician.id,),
            values={"remarks": remarks},
            comment=f"{issue_type}: {remarks}",
            technician_id=technician.id,
        )
        issue = file_work_issue(
            db,
            work=work,
            technician_id=technician.id,
            technician_name=technician.name,
            issue_type=issue_type,
            remarks=payload.remarks,
        )
        db.flush()
        issue_id = issue.id
        _set_duty(db, technician.id, duty_status=DUTY_PENDING)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(work)
    _LOG.info("technician %s reported %s on work %s", technician.id, issue_type, work.token)
    result = {"workStatus": work.status, "remarks": work.remarks, "adminNotificationId": str(issue_id)}
    dispatch_notifications(
        db,
        work,
        [
            PendingNotification(
                recipient_id=work.client_id,
                role=ROLE_CLIENT,
                title="Work on hold",
                body=f"{work.token}: {remarks}",
                severity=SEVERITY_WARNING,
                deep_link=client_link(work),
            )
        ],
    )
    _publish_status(work)
    return result


def resume_work(db: Session, actor: dict[str, Any], work_id: str, payload: ResumeWork) -> dict[str, Any]:
    """Bring an on-hold work back to ``inprogress``; allowed for the assigned technician or an admin."""
    work = get_work_or_404(db, work_id)
    role = actor_role(actor)
    if role == ROLE_TECHNICIAN:
        technician = active_technician_or_403(db, actor)
        ensure_assigned_technician_or_403(work, technician.id)
    elif role != ROLE_ADMIN:
        raise ForbiddenError("Only the assigned technician or an admin can resume work")
    if work.status not in {status.value for status in ON_HOLD_STATUSES}:
        raise InvalidStateError("Only on-hold work can be resumed", current_status=work.status)
    if work.assigned_technician_id is None:
        raise InvalidStateError("Work has no assigned technician", current_status=work.status)
    if technician_is_busy(db, work.assigned_technician_id, exclude_work_id=work.id):
        raise ConflictError("Technician already has an active work")

    try:
        guarded_transition(
            db,
            work,
            WorkStatus.INPROGRESS,
            actor=actor,
            from_statuses=ON_HOLD_STATUSES,
            where=(no_other_active_work(work.assigned_technician_id, exclude_work_id=work.id),),
            comment=str(payload.comment or "").strip() or "Work resumed",
        )
        _set_duty(db, work.assigned_technician_id, duty_status=DUTY_IN_PROGRESS)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(work)
    result = {"work": serialize_work(work)}
    items = [
        PendingNotification(
            recipient_id=work.client_id,
            role=ROLE_CLIENT,
            title="Work resumed",
            body=f"Work on {work.token} has resumed.",
            deep_link=client_link(work),
        )
    ]
    if role == ROLE_ADMIN:
        items.append(
            PendingNotification(
                recipient_id=work.assigned_technician_id,
                role=ROLE_TECHNICIAN,
                title="Work resumed by admin",
                body=f"{work.token} is back in progress.",
                deep_link=technician_link(work),
            )
        )
    dispatch_notifications(db, work, items)
    _publish_status(work)
    return result


def select_route(db: Session, actor: dict[str, Any], work_id: str, payload: RouteSelect) -> dict[str, Any]:
    work = get_work_or_404(db, work_id)
    ensure_participant_or_403(work, actor)
    if payload.route_index is None or int(payload.route_index) < 0:
        raise InvalidInputError("A non-negative route index is required")
    work.selected_route_index = int(payload.route_index)
    db.add(work)
    db.commit()
    return {"workId": str(work.id), "selectedRouteIndex": int(payload.route_index)}


def save_location(db: Session, actor: dict[str, Any], payload: LocationUpdate) -> dict[str, Any]:
    user = db.get(User, actor_uuid_or_401(actor))
    if user is None:
        raise NotFoundError("User not found")
    lat, lng = validate_coordinates(payload.lat, payload.lng)
    now = _now()
    user.lat = lat
    user.lng = lng
    user.last_location_update = now
    db.add(user)
    db.commit()
    return {"coordinates": {"lat": lat, "lng": lng}, "lastUpdated": now.isoformat()}


def get_location(db: Session, actor: dict[str, Any]) -> dict[str, Any]:
    user = db.get(User, actor_uuid_or_401(actor))
    if user is None or user.lat is None or user.lng is None:
        raise NotFoundError("No saved location found")
    return {
        "coordinates": {"lat": user.lat, "lng": user.lng},
        "lastUpdated": user.last_location_update.isoformat() if user.last_location_update else None,
    }
