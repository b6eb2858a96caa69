from __future__ import annotations

import logging
import uuid

_LOG = logging.getLogger(__name__)


def emit_work_completed(bill_id: uuid.UUID) -> bool:
    """Hand a committed bill to the out-of-band delivery worker (PDF, QR, email)."""
    from app.workers.tasks.billing import deliver_bill

    try:
        deliver_bill.delay(str(bill_id))
    except Exception:
        _LOG.exception("could not enqueue bill delivery for %s", bill_id)
        return False
    return True


def emit_payment_recorded(bill_id: uuid.UUID) -> bool:
    from app.workers.tasks.billing import send_payment_receipt

    try:
        send_payment_receipt.delay(str(bill_id))
    except Exception:
        _LOG.exception("could not enqueue payment receipt for %s", bill_id)
        return False
    return True
