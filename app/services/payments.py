from __future__ import annotations

import base64
import io
import logging
from decimal import Decimal
from urllib.parse import quote

import qrcode

_LOG = logging.getLogger(__name__)

PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_UPI = "upi"
ALLOWED_PAYMENT_METHODS = {PAYMENT_METHOD_CASH, PAYMENT_METHOD_UPI}


def format_amount(amount: Decimal | float | int) -> str:
    return f"{Decimal(str(amount)).quantize(Decimal('0.01'))}"


def build_upi_uri(vpa: str, payee_name: str, amount: Decimal | float | int, note: str) -> str:
    return (
        f"upi://pay?pa={quote(str(vpa or '').strip(), safe='@.-_')}"
        f"&pn={quote(str(payee_name or '').strip(), safe='')}"
        f"&am={format_amount(amount)}"
        "&cu=INR"
        f"&tn={quote(str(note or '').strip(), safe='')}"
    )


def render_qr_png(uri: str) -> bytes:
    img = qrcode.make(uri)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def render_qr_data_url(uri: str) -> str | None:
    try:
        png = render_qr_png(uri)
    except Exception as exc:
        _LOG.warning("QR rendering skipped: %s", exc)
        return None
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")
