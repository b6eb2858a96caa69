from __future__ import annotations

from datetime import datetime
from typing import Any
import unicodedata


def _ascii_text(value: Any) -> str:
    text = str(value or "")
    normalized = unicodedata.normalize("NFKD", text)
    return normalized.encode("ascii", "ignore").decode("ascii")


def _escape_pdf_text(value: str) -> str:
    return value.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def _build_content_stream(lines: list[str]) -> bytes:
    safe_lines = [_escape_pdf_text(_ascii_text(line)) for line in lines]
    if not safe_lines:
        safe_lines = ["Bill"]
    parts = ["BT", "/F1 11 Tf", "14 TL", "50 800 Td"]
    for index, line in enumerate(safe_lines):
        if index > 0:
            parts.append("T*")
        parts.append(f"({line}) Tj")
    parts.append("ET")
    return "\n".join(parts).encode("latin-1", errors="ignore")


def _money(value: Any) -> str:
    return f"{float(value or 0):.2f}"


def build_bill_pdf_bytes(
    *,
    bill_number: str,
    work_token: str,
    service_type: str,
    issued_at: datetime | None,
    client_name: str,
    technician_name: str,
    items: list[dict[str, Any]],
    service_charge: Any,
    total_amount: Any,
    currency: str,
    payment_method: str,
    payment_status: str,
) -> bytes:
    lines = [
        f"Bill: {bill_number}",
        f"Work: {work_token} ({service_type})",
        f"Issued at: {issued_at.isoformat() if issued_at else '-'}",
        f"Client: {client_name}",
        f"Technician: {technician_name}",
        "",
        "Items:",
    ]
    if items:
        for item in items:
            qty = item.get("qty") or 0
            price = item.get("price") or 0
            lines.append(f"  {item.get('name') or '-'}  {qty} x {_money(price)} = {_money(float(price) * float(qty))}")
    else:
        lines.append("  -")
    lines.extend(
        [
            f"Service charge: {_money(service_charge)} {currency}",
            f"Total: {_money(total_amount)} {currency}",
            f"Payment method: {str(payment_method or '-').upper()}",
            f"Payment status: {payment_status}",
        ]
    )

    stream = _build_content_stream(lines)
    objects = [
        b"1 0 obj << /Type /Catalog /Pages 2 0 R >> endobj\n",
        b"2 0 obj << /Type /Pages /Kids [3 0 R] /Count 1 >> endobj\n",
        b"3 0 obj << /Type /Page /Parent 2 0 R /MediaBox [0 0 595 842] /Resources << /Font << /F1 4 0 R >> >> /Contents 5 0 R >> endobj\n",
        b"4 0 obj << /Type /Font /Subtype /Type1 /BaseFont /Helvetica >> endobj\n",
        f"5 0 obj << /Length {len(stream)} >> stream\n".encode("latin-1") + stream + b"\nendstream endobj\n",
    ]

    body = b"%PDF-1.4\n"
    offsets = [0]
    for obj in objects:
        offsets.append(len(body))
        body += obj
    xref_offset = len(body)
    body += f"xref\n0 {len(objects)+1}\n".encode("latin-1")
    body += b"0000000000 65535 f \n"
    for offset in offsets[1:]:
        body += f"{offset:010d} 00000 n \n".encode("latin-1")
    body += f"trailer << /Size {len(objects)+1} /Root 1 0 R >>\nstartxref\n{xref_offset}\n%%EOF\n".encode("latin-1")
    return body
