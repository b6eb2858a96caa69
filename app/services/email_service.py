from __future__ import annotations

import base64
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any
import httpx

from app.core.config import settings


class EmailDeliveryError(Exception):
    pass


logger = logging.getLogger("uvicorn.error")


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    mime_type: str = "application/octet-stream"
    content_id: str | None = None


def _normalize_email(value: str | None) -> str:
    return str(value or "").strip().lower()


def _mock_send(*, email: str, subject: str, attachments: list[EmailAttachment]) -> dict[str, Any]:
    names = ",".join(item.filename for item in attachments) or "-"
    logger.warning("[EMAIL MOCK] to=%s subject=%s attachments=%s", email, subject, names)
    return {
        "provider": "mock_email",
        "status": "accepted",
        "message": "Email provider response mocked",
        "sent": False,
        "mocked": True,
    }


def _send_smtp(*, email: str, subject: str, html_body: str, attachments: list[EmailAttachment]) -> dict[str, Any]:
    host = str(settings.SMTP_HOST or "").strip()
    port = int(settings.SMTP_PORT or 0)
    username = str(settings.SMTP_USER or "").strip()
    password = str(settings.SMTP_PASSWORD or "").strip()
    sender = str(settings.SMTP_FROM or "").strip()
    use_tls = bool(getattr(settings, "SMTP_USE_TLS", True))
    use_ssl = bool(getattr(settings, "SMTP_USE_SSL", False))

    if not host or not port or not sender:
        raise EmailDeliveryError("SMTP_HOST/SMTP_PORT/SMTP_FROM are not configured")
    if use_tls and use_ssl:
        raise EmailDeliveryError("SMTP_USE_TLS and SMTP_USE_SSL are mutually exclusive")

    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = email
    msg["Subject"] = subject
    msg.set_content("This message requires an HTML capable mail client.")
    msg.add_alternative(html_body, subtype="html")
    html_part = msg.get_payload()[-1]
    for item in attachments:
        maintype, _, subtype = item.mime_type.partition("/")
        if item.content_id:
            html_part.add_related(
                item.content,
                maintype=maintype,
                subtype=subtype or "octet-stream",
                cid=f"<{item.content_id}>",
                filename=item.filename,
            )
        else:
            msg.add_attachment(
                item.content,
                maintype=maintype,
                subtype=subtype or "octet-stream",
                filename=item.filename,
            )

    try:
        if use_ssl:
            smtp = smtplib.SMTP_SSL(host=host, port=port, timeout=15)
        else:
            smtp = smtplib.SMTP(host=host, port=port, timeout=15)
        with smtp as client:
            client.ehlo()
            if use_tls:
                client.starttls()
                client.ehlo()
            if username:
                client.login(username, password)
            client.send_message(msg)
    except Exception as exc:
        raise EmailDeliveryError(f"SMTP delivery failed: {exc}") from exc

    return {
        "provider": "smtp",
        "status": "accepted",
        "message": "Email sent",
        "sent": True,
    }


def _send_via_email_service(
    *, email: str, subject: str, html_body: str, attachments: list[EmailAttachment]
) -> dict[str, Any]:
    base_url = str(settings.EMAIL_SERVICE_URL or "").strip().rstrip("/")
    token = str(settings.INTERNAL_SERVICE_TOKEN or "").strip()
    if not base_url:
        raise EmailDeliveryError("EMAIL_SERVICE_URL is not configured")
    if not token:
        raise EmailDeliveryError("INTERNAL_SERVICE_TOKEN is not configured")
    body = {
        "email": email,
        "subject": subject,
        "html": html_body,
        "attachments": [
            {
                "filename": item.filename,
                "type": item.mime_type,
                "content": base64.b64encode(item.content).decode("ascii"),
                "content_id": item.content_id,
                "disposition": "inline" if item.content_id else "attachment",
            }
            for item in attachments
        ],
    }
    try:
        with httpx.Client(timeout=15.0) as client:
            response = client.post(
                f"{base_url}/internal/send",
                headers={"X-Internal-Token": token, "Content-Type": "application/json"},
                json=body,
            )
    except Exception as exc:
        raise EmailDeliveryError(f"email-service request failed: {exc}") from exc
    payload: dict[str, Any] = {}
    try:
        payload = response.json() if response.content else {}
    except Exception:
        payload = {}
    if response.status_code >= 400:
        detail = str(payload.get("detail") or payload.get("error") or response.text or response.status_code)
        raise EmailDeliveryError(f"email-service error: {detail}")
    return {
        "provider": "email-service",
        "status": "accepted",
        "message": "Email sent through email-service",
        "sent": True,
        "response": payload,
    }


def send_email(
    *,
    to: str,
    subject: str,
    html_body: str,
    attachments: list[EmailAttachment] | None = None,
) -> dict[str, Any]:
    normalized_email = _normalize_email(to)
    if not normalized_email:
        raise EmailDeliveryError("Recipient email is empty")
    files = list(attachments or [])

    provider = str(settings.EMAIL_PROVIDER or "dummy").strip().lower()
    if provider in {"", "dummy", "mock", "console"}:
        return _mock_send(email=normalized_email, subject=subject, attachments=files)

    if provider in {"service", "email_service"}:
        return _send_via_email_service(email=normalized_email, subject=subject, html_body=html_body, attachments=files)

    if provider == "smtp":
        return _send_smtp(email=normalized_email, subject=subject, html_body=html_body, attachments=files)

    raise EmailDeliveryError(f"Unknown EMAIL_PROVIDER: {provider}")
