from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from app.core.config import settings
from app.db.session import SessionLocal
from app.models.bill import Bill
from app.models.user import User
from app.models.work_request import WorkRequest
from app.services.email_service import EmailAttachment, send_email
from app.services.external_calls import ExternalCallFailed, call_with_retries
from app.services.invoice_pdf import build_bill_pdf_bytes
from app.services.payments import PAYMENT_METHOD_UPI, format_amount, render_qr_png
from app.workers.celery_app import celery_app

_LOG = logging.getLogger(__name__)

DELIVERY_DELIVERED = "delivered"
DELIVERY_FAILED = "failed"
DELIVERY_SKIPPED = "skipped"

QR_CONTENT_ID = "upi-qr"


def _bill_html(bill: Bill, work: WorkRequest, client_name: str, *, with_qr: bool) -> str:
    rows = "".join(
        f"<tr><td>{item.get('name') or '-'}</td><td>{item.get('qty') or 0}</td><td>{item.get('price') or 0}</td></tr>"
        for item in (bill.items or [])
    )
    qr_block = ""
    if with_qr:
        qr_block = f'<p>Scan to pay with UPI:</p><img src="cid:{QR_CONTENT_ID}" alt="UPI QR" width="220" height="220"/>'
    return (
        f"<p>Hello {client_name},</p>"
        f"<p>Your service request <b>{work.token}</b> ({work.service_type}) is complete.</p>"
        f"<table><tr><th>Item</th><th>Qty</th><th>Price</th></tr>{rows}</table>"
        f"<p>Service charge: {format_amount(bill.service_charge)} {bill.currency}</p>"
        f"<p><b>Total: {format_amount(bill.total_amount)} {bill.currency}</b></p>"
        f"<p>Payment method: {str(bill.payment_method).upper()}</p>"
        f"{qr_block}"
    )


def _load(db, bill_id: uuid.UUID) -> tuple[Bill, WorkRequest, User | None, User | None] | None:
    bill = db.get(Bill, bill_id)
    if bill is None:
        return None
    work = db.get(WorkRequest, bill.work_id)
    if work is None:
        return None
    return bill, work, db.get(User, bill.client_id), db.get(User, bill.technician_id)


def deliver_bill_impl(bill_id: str) -> dict:
    db = SessionLocal()
    try:
        loaded = _load(db, uuid.UUID(str(bill_id)))
        if loaded is None:
            _LOG.warning("bill delivery skipped, bill %s not found", bill_id)
            return {"bill_id": str(bill_id), "status": DELIVERY_SKIPPED}
        bill, work, client, technician = loaded
        client_name = (client.name if client else None) or "Customer"

        if client is None or not str(client.email or "").strip():
            bill.delivery_status = DELIVERY_SKIPPED
            bill.delivery_error = "client has no email address"
            db.add(bill)
            db.commit()
            return {"bill_id": str(bill.id), "status": DELIVERY_SKIPPED}

        attachments: list[EmailAttachment] = []
        try:
            pdf = build_bill_pdf_bytes(
                bill_number=bill.bill_number,
                work_token=work.token,
                service_type=work.service_type,
                issued_at=bill.created_at,
                client_name=client_name,
                technician_name=(technician.name if technician else None) or "-",
                items=list(bill.items or []),
                service_charge=bill.service_charge,
                total_amount=bill.total_amount,
                currency=bill.currency,
                payment_method=bill.payment_method,
                payment_status=bill.payment_status,
            )
            attachments.append(EmailAttachment(f"{bill.bill_number}.pdf", pdf, "application/pdf"))
        except Exception as exc:
            _LOG.warning("invoice PDF skipped for bill %s: %s", bill.id, exc)

        with_qr = False
        if bill.payment_method == PAYMENT_METHOD_UPI and bill.upi_uri:
            try:
                attachments.append(
                    EmailAttachment("upi-qr.png", render_qr_png(bill.upi_uri), "image/png", content_id=QR_CONTENT_ID)
                )
                with_qr = True
            except Exception as exc:
                _LOG.warning("QR attachment skipped for bill %s: %s", bill.id, exc)

        subject = f"Invoice {bill.bill_number} for {work.token}"
        html_body = _bill_html(bill, work, client_name, with_qr=with_qr)
        try:
            call_with_retries(
                lambda: send_email(to=client.email, subject=subject, html_body=html_body, attachments=attachments),
                label="bill_email",
            )
        except ExternalCallFailed as exc:
            bill.delivery_status = DELIVERY_FAILED
            bill.delivery_error = str(exc)[:1000]
            db.add(bill)
            db.commit()
            return {"bill_id": str(bill.id), "status": DELIVERY_FAILED}

        bill.delivery_status = DELIVERY_DELIVERED
        bill.delivered_at = datetime.now(timezone.utc)
        bill.delivery_error = None
        db.add(bill)
        db.commit()
        return {"bill_id": str(bill.id), "status": DELIVERY_DELIVERED}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def send_payment_receipt_impl(bill_id: str) -> dict:
    db = SessionLocal()
    try:
        loaded = _load(db, uuid.UUID(str(bill_id)))
        if loaded is None:
            return {"bill_id": str(bill_id), "sent": False}
        bill, work, client, _technician = loaded
        if client is None or not str(client.email or "").strip():
            return {"bill_id": str(bill.id), "sent": False}
        payment = dict(work.payment or {})
        html_body = (
            f"<p>Hello {client.name or 'Customer'},</p>"
            f"<p>We recorded your payment of {format_amount(bill.total_amount)} {settings.BILL_CURRENCY} "
            f"for {work.token} via {str(payment.get('method') or bill.payment_method).upper()}.</p>"
            "<p>The technician will confirm it shortly.</p>"
        )
        try:
            call_with_retries(
                lambda: send_email(to=client.email, subject=f"Payment received for {work.token}", html_body=html_body),
                label="payment_receipt_email",
            )
        except ExternalCallFailed as exc:
            _LOG.warning("payment receipt for bill %s not delivered: %s", bill.id, exc)
            return {"bill_id": str(bill.id), "sent": False}
        return {"bill_id": str(bill.id), "sent": True}
    finally:
        db.close()


@celery_app.task(name="app.workers.tasks.billing.deliver_bill")
def deliver_bill(bill_id: str):
    return deliver_bill_impl(bill_id)


@celery_app.task(name="app.workers.tasks.billing.send_payment_receipt")
def send_payment_receipt(bill_id: str):
    return send_payment_receipt_impl(bill_id)
