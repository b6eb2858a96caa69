from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, InvalidInputError, NotFoundError
from app.models.booking import Booking
from app.models.user import ROLE_CLIENT, ROLE_TECHNICIAN, User
from app.models.work_request import WorkRequest
from app.schemas.works import BookingCreate
from app.services import live_channel
from app.services.geo_matcher import technician_is_busy
from app.services.geocoding import resolve_address
from app.services.notifications import (
    PendingNotification,
    SEVERITY_SUCCESS,
    client_link,
    dispatch_notifications,
    technician_link,
)
from app.services.work_access import (
    client_or_404,
    ensure_owner_or_403,
    explain_guard_failure,
    get_user_or_404,
    get_work_or_404,
    no_other_active_work,
    parse_client_date,
    serialize_work,
    uuid_or_400,
    validate_coordinates,
)
from app.services.work_status import WorkStatus, ensure_transition, register_status_history, sources_for

_LOG = logging.getLogger(__name__)

# Booking statuses that count as "already booked" for the same client/technician/service.
BLOCKING_BOOKING_STATUSES = (WorkStatus.DISPATCH.value, WorkStatus.INPROGRESS.value)


def has_active_booking(db: Session, *, client_id: uuid.UUID, technician_id: uuid.UUID, service_type: str) -> bool:
    row = (
        db.query(Booking.id)
        .filter(
            Booking.client_id == client_id,
            Booking.technician_id == technician_id,
            func.lower(Booking.service_type) == str(service_type or "").strip().lower(),
            Booking.status.in_(BLOCKING_BOOKING_STATUSES),
        )
        .first()
    )
    return row is not None


def mirror_booking_status(db: Session, work: WorkRequest, status: WorkStatus | str) -> None:
    """Copy the work status onto its booking; the booking is never read back for decisions."""
    if work.booking_id is None:
        return
    db.execute(
        update(Booking)
        .where(Booking.id == work.booking_id)
        .values(status=str(getattr(status, "value", status)))
        .execution_options(synchronize_session=False)
    )


def serialize_booking(booking: Booking) -> dict[str, Any]:
    return {
        "id": str(booking.id),
        "workId": str(booking.work_id),
        "client": str(booking.client_id),
        "technician": str(booking.technician_id),
        "serviceType": booking.service_type,
        "serviceCharge": float(booking.service_charge or 0),
        "description": booking.description,
        "location": booking.location,
        "address": booking.address,
        "coordinates": {"lat": booking.lat, "lng": booking.lng} if booking.lat is not None else None,
        "date": booking.scheduled_date.isoformat() if booking.scheduled_date else None,
        "time": booking.scheduled_time,
        "status": booking.status,
        "createdAt": booking.created_at.isoformat() if booking.created_at else None,
    }


def apply_booking(
    db: Session,
    *,
    work: WorkRequest,
    technician: User,
    client_id: uuid.UUID,
    actor: dict[str, Any],
    lat: float,
    lng: float,
    location: str,
    scheduled_date: date | None,
    scheduled_time: str | None,
    service_type: str | None = None,
    service_charge: Decimal | None = None,
    description: str | None = None,
    address: str | None = None,
) -> Booking:
    """Reserve ``technician`` for ``work`` inside the caller's transaction.

    The work row moves to ``taken`` through one conditional UPDATE that also
    re-checks, in SQL, that the technician holds no other active work.
    """
    effective_type = str(service_type or work.service_type or "").strip()
    if has_active_booking(db, client_id=client_id, technician_id=technician.id, service_type=effective_type):
        raise ConflictError("Technician already has an active booking for this service")
    if technician_is_busy(db, technician.id, exclude_work_id=work.id):
        raise ConflictError("Technician is busy with another work")
    ensure_transition(work.status, WorkStatus.TAKEN)

    from_status = work.status
    charge = service_charge if service_charge is not None else Decimal(str(work.service_charge or 0))
    booking = Booking(
        work_id=work.id,
        client_id=client_id,
        technician_id=technician.id,
        service_type=effective_type,
        service_charge=charge,
        description=description if description is not None else work.description,
        location=location,
        lat=lat,
        lng=lng,
        address=address,
        scheduled_date=scheduled_date,
        scheduled_time=scheduled_time,
        status=WorkStatus.TAKEN.value,
    )
    db.add(booking)
    db.flush()

    values: dict[str, Any] = {
        "assigned_technician_id": technician.id,
        "status": WorkStatus.TAKEN.value,
        "lat": lat,
        "lng": lng,
        "location": location,
        "scheduled_date": scheduled_date,
        "scheduled_time": scheduled_time,
        "service_type": effective_type,
        "service_charge": charge,
        "booking_id": booking.id,
    }
    if description is not None:
        values["description"] = description
    result = db.execute(
        update(WorkRequest)
        .where(
            WorkRequest.id == work.id,
            WorkRequest.client_id == client_id,
            WorkRequest.status.in_(sources_for(WorkStatus.TAKEN)),
            no_other_active_work(technician.id, exclude_work_id=work.id),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        if technician_is_busy(db, technician.id, exclude_work_id=work.id):
            raise ConflictError("Technician is busy with another work")
        raise explain_guard_failure(db, work.id)

    register_status_history(
        db,
        work_id=work.id,
        from_status=from_status,
        to_status=WorkStatus.TAKEN,
        actor=actor,
        comment=f"Booked technician {technician.name}",
    )
    return booking


def book_technician(db: Session, actor: dict[str, Any], payload: BookingCreate) -> dict[str, Any]:
    client = client_or_404(db, actor)
    if not payload.work_id:
        raise InvalidInputError('Field "work_id" is required')
    if not payload.technician_id:
        raise InvalidInputError('Field "technician_id" is required')
    work_id = uuid_or_400(payload.work_id, field="work_id")
    technician_id = uuid_or_400(payload.technician_id, field="technician_id")
    coordinates = payload.coordinates
    lat, lng = validate_coordinates(coordinates.lat if coordinates else None, coordinates.lng if coordinates else None)
    scheduled_date = parse_client_date(payload.date)
    if scheduled_date is None:
        raise InvalidInputError("Date is required")

    technician = get_user_or_404(db, technician_id, role=ROLE_TECHNICIAN, label="Technician")
    if not technician.is_active:
        raise NotFoundError("Technician not found")
    work = get_work_or_404(db, work_id)
    ensure_owner_or_403(work, client.id)

    address = str(payload.address or "").strip() or None
    location = address or resolve_address(lat, lng)
    try:
        booking = apply_booking(
            db,
            work=work,
            technician=technician,
            client_id=client.id,
            actor=actor,
            lat=lat,
            lng=lng,
            location=location,
            scheduled_date=scheduled_date,
            scheduled_time=str(payload.time or "").strip() or None,
            service_type=str(payload.service_type or "").strip() or None,
            service_charge=payload.service_charge,
            description=payload.description,
            address=address,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(work)
    db.refresh(booking)
    result = {"booking": serialize_booking(booking), "work": serialize_work(work)}
    _LOG.info("work %s booked with technician %s", work.token, technician.id)

    dispatch_notifications(
        db,
        work,
        [
            PendingNotification(
                recipient_id=technician.id,
                role=ROLE_TECHNICIAN,
                title="New booking",
                body=f"{client.name} booked you for {work.service_type} ({work.token})",
                deep_link=technician_link(work),
            ),
            PendingNotification(
                recipient_id=client.id,
                role=ROLE_CLIENT,
                title="Technician booked",
                body=f"{technician.name} is booked for {work.token}",
                severity=SEVERITY_SUCCESS,
                deep_link=client_link(work),
            ),
        ],
    )
    live_channel.publish(
        live_channel.technician_channel(technician.id),
        "booking",
        {"work_id": result["work"]["id"], "token": result["work"]["token"], "status": result["work"]["status"]},
    )
    return result
