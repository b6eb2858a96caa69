from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ConflictError, ForbiddenError, InvalidInputError, InvalidStateError, NotFoundError
from app.models.bill import Bill
from app.models.user import ROLE_CLIENT, ROLE_TECHNICIAN
from app.models.work_request import WorkRequest
from app.schemas.works import BillItem, ClientPayment, WorkComplete
from app.services.notifications import (
    EVENT_BILL,
    EVENT_PAYMENT,
    PendingNotification,
    SEVERITY_SUCCESS,
    client_link,
    dispatch_notifications,
    technician_link,
)
from app.services.payments import (
    ALLOWED_PAYMENT_METHODS,
    PAYMENT_METHOD_UPI,
    build_upi_uri,
    format_amount,
    render_qr_data_url,
)
from app.services.s3_storage import AFTER_PHOTO_FOLDER
from app.services.work_access import (
    active_technician_or_403,
    actor_role,
    actor_uuid_or_401,
    client_or_404,
    ensure_assigned_technician_or_403,
    ensure_owner_or_403,
    explain_guard_failure,
    get_work_or_404,
    serialize_work,
)
from app.services.work_events import emit_payment_recorded, emit_work_completed
from app.services.work_photos import upload_work_photo
from app.services.work_status import WorkStatus
from app.services.work_transitions import guarded_transition

_LOG = logging.getLogger(__name__)

BILL_STATUS_SENT = "sent"
BILL_STATUS_PAID = "paid"

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_CONFIRMED = "confirmed"

_CENT = Decimal("0.01")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _decimal(value: Any) -> Decimal:
    return Decimal(str(value if value is not None else 0))


def normalize_payment_method_or_400(raw: Any) -> str:
    method = str(raw or "").strip().lower()
    if method not in ALLOWED_PAYMENT_METHODS:
        raise InvalidInputError("Invalid payment method")
    return method


def _cents(value: Any) -> Decimal:
    return _decimal(value).quantize(_CENT)


def bill_lines(items: Iterable[BillItem]) -> list[dict[str, Any]]:
    """Line items as stored on the bill, each price rounded to the cent once."""
    return [{"name": item.name.strip(), "price": _cents(item.price), "qty": int(item.qty)} for item in items]


def compute_total(lines: Iterable[dict[str, Any]], service_charge: Any) -> Decimal:
    """Sum of ``price * qty`` over the stored line items plus the service charge."""
    total = _cents(service_charge)
    for line in lines:
        total += _cents(line["price"]) * int(line["qty"])
    return total


def bill_number_for(work_token: str) -> str:
    return f"BILL-{str(work_token).removeprefix('REQ-')}"


def serialize_bill(bill: Bill) -> dict[str, Any]:
    return {
        "id": str(bill.id),
        "billNumber": bill.bill_number,
        "workId": str(bill.work_id),
        "technician": str(bill.technician_id),
        "client": str(bill.client_id),
        "items": list(bill.items or []),
        "serviceCharge": format_amount(bill.service_charge),
        "totalAmount": format_amount(bill.total_amount),
        "currency": bill.currency,
        "paymentMethod": bill.payment_method,
        "paymentStatus": bill.payment_status,
        "upiUri": bill.upi_uri,
        "paidAt": bill.paid_at.isoformat() if bill.paid_at else None,
        "deliveryStatus": bill.delivery_status,
        "createdAt": bill.created_at.isoformat() if bill.created_at else None,
    }


def complete_work(db: Session, actor: dict[str, Any], work_id: str, payload: WorkComplete) -> dict[str, Any]:
    """Close an in-progress work and create its bill in the same transaction.

    PDF rendering and email delivery run afterwards in the ``deliver_bill`` task;
    their failures never reach the committed work or bill.
    """
    technician = active_technician_or_403(db, actor)
    work = get_work_or_404(db, work_id)
    ensure_assigned_technician_or_403(work, technician.id)
    method = normalize_payment_method_or_400(payload.payment_method)
    if work.status != WorkStatus.INPROGRESS.value:
        raise InvalidStateError("Work is not in progress", current_status=work.status)

    service_charge = (
        _decimal(payload.service_charge) if payload.service_charge is not None else _decimal(work.service_charge)
    ).quantize(_CENT)
    lines = bill_lines(payload.items)
    total = compute_total(lines, service_charge)
    items = [{**line, "price": format_amount(line["price"])} for line in lines]
    upi_uri = None
    if method == PAYMENT_METHOD_UPI:
        upi_uri = build_upi_uri(
            settings.UPI_MERCHANT_VPA,
            settings.UPI_PAYEE_NAME,
            total,
            f"Payment for {work.token}",
        )

    photo_url = upload_work_photo(payload.after_photo, folder=AFTER_PHOTO_FOLDER)
    completed_at = _now()
    try:
        bill = Bill(
            work_id=work.id,
            technician_id=technician.id,
            client_id=work.client_id,
            bill_number=bill_number_for(work.token),
            items=items,
            service_charge=service_charge,
            total_amount=total,
            currency=settings.BILL_CURRENCY,
            payment_method=method,
            payment_status=BILL_STATUS_SENT,
            upi_uri=upi_uri,
        )
        db.add(bill)
        db.flush()
        bill_id = bill.id
        values: dict[str, Any] = {
            "bill_id": bill_id,
            "completed_at": completed_at,
            "service_charge": service_charge,
        }
        if photo_url:
            values["after_photo"] = photo_url
        guarded_transition(
            db,
            work,
            WorkStatus.COMPLETED,
            actor=actor,
            from_statuses=[WorkStatus.INPROGRESS],
            where=(WorkRequest.assigned_technician_id == technician.id,),
            values=values,
            comment=f"Bill {bill.bill_number} total {format_amount(total)}",
            technician_id=technician.id,
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("A bill already exists for this work") from exc
    except Exception:
        db.rollback()
        raise

    db.refresh(work)
    db.refresh(bill)
    _LOG.info("work %s completed, bill %s total %s %s", work.token, bill.bill_number, total, bill.currency)
    result = {
        "work": serialize_work(work),
        "bill": serialize_bill(bill),
        "upiUri": upi_uri,
        "qrCode": render_qr_data_url(upi_uri) if upi_uri else None,
    }

    emit_work_completed(bill_id)
    dispatch_notifications(
        db,
        work,
        [
            PendingNotification(
                recipient_id=work.client_id,
                role=ROLE_CLIENT,
                title="Work completed",
                body=f"{work.token} is complete. Amount due: {format_amount(total)} {settings.BILL_CURRENCY}",
                severity=SEVERITY_SUCCESS,
                deep_link=client_link(work),
                event_type=EVENT_BILL,
                payload={"bill_id": str(bill_id), "payment_method": method},
            )
        ],
    )
    return result


def record_client_payment(db: Session, actor: dict[str, Any], work_id: str, payload: ClientPayment) -> dict[str, Any]:
    client = client_or_404(db, actor)
    work = get_work_or_404(db, work_id)
    ensure_owner_or_403(work, client.id)
    method = normalize_payment_method_or_400(payload.method)
    if work.status != WorkStatus.COMPLETED.value:
        raise InvalidStateError("Work not completed yet", current_status=work.status)

    payment = {
        "method": method,
        "status": str(payload.status or "").strip().lower() or PAYMENT_STATUS_PENDING,
        "paidAt": _now().isoformat(),
    }
    try:
        result = db.execute(
            update(WorkRequest)
            .where(WorkRequest.id == work.id, WorkRequest.status == WorkStatus.COMPLETED.value)
            .values(payment=payment)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise explain_guard_failure(db, work.id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(work)
    if work.bill_id is not None:
        emit_payment_recorded(work.bill_id)
    if work.assigned_technician_id is not None:
        dispatch_notifications(
            db,
            work,
            [
                PendingNotification(
                    recipient_id=work.assigned_technician_id,
                    role=ROLE_TECHNICIAN,
                    title="Payment recorded",
                    body=f"Client reported a {method.upper()} payment for {work.token}.",
                    deep_link=technician_link(work),
                    event_type=EVENT_PAYMENT,
                )
            ],
        )
    return {"payment": dict(work.payment or {})}


def confirm_payment(db: Session, actor: dict[str, Any], work_id: str, payload: ClientPayment) -> dict[str, Any]:
    """Move ``completed`` to ``confirm``; the assigned technician or the owning client may confirm."""
    work = get_work_or_404(db, work_id)
    role = actor_role(actor)
    if role == ROLE_TECHNICIAN:
        technician = active_technician_or_403(db, actor)
        ensure_assigned_technician_or_403(work, technician.id)
    elif role == ROLE_CLIENT:
        ensure_owner_or_403(work, actor_uuid_or_401(actor))
    else:
        raise ForbiddenError("Only the assigned technician or the client can confirm payment")

    bill = db.get(Bill, work.bill_id) if work.bill_id else None
    if work.status != WorkStatus.COMPLETED.value:
        raise InvalidStateError("Work must be completed before confirming payment", current_status=work.status)
    if bill is None:
        raise NotFoundError("Bill not found")
    method = normalize_payment_method_or_400(payload.method or bill.payment_method)

    now = _now()
    payment = dict(work.payment or {})
    payment.update(
        {
            "method": method,
            "status": PAYMENT_STATUS_CONFIRMED,
            "confirmedBy": str(actor_uuid_or_401(actor)),
            "confirmedAt": now.isoformat(),
        }
    )
    try:
        guarded_transition(
            db,
            work,
            WorkStatus.CONFIRM,
            actor=actor,
            from_statuses=[WorkStatus.COMPLETED],
            values={"payment": payment},
            comment=f"Payment confirmed ({method})",
        )
        bill.payment_status = BILL_STATUS_PAID
        bill.paid_at = now
        db.add(bill)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(work)
    result = {"payment": dict(work.payment or {}), "work": serialize_work(work)}
    other = (
        PendingNotification(
            recipient_id=work.client_id,
            role=ROLE_CLIENT,
            title="Payment confirmed",
            body=f"Payment for {work.token} has been confirmed.",
            severity=SEVERITY_SUCCESS,
            deep_link=client_link(work),
            event_type=EVENT_PAYMENT,
        )
        if role == ROLE_TECHNICIAN
        else PendingNotification(
            recipient_id=work.assigned_technician_id,
            role=ROLE_TECHNICIAN,
            title="Payment confirmed",
            body=f"Client confirmed payment for {work.token}.",
            severity=SEVERITY_SUCCESS,
            deep_link=technician_link(work),
            event_type=EVENT_PAYMENT,
        )
    )
    dispatch_notifications(db, work, [other])
    return result
