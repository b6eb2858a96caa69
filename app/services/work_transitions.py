from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.errors import InvalidStateError
from app.models.work_request import WorkRequest
from app.services.booking_ledger import mirror_booking_status
from app.services.work_access import explain_guard_failure
from app.services.work_status import WorkStatus, register_status_history, sources_for


def _values(statuses: Iterable[Any]) -> set[str]:
    return {str(getattr(status, "value", status)) for status in statuses}


def guarded_transition(
    db: Session,
    work: WorkRequest,
    to_status: WorkStatus,
    *,
    actor: dict[str, Any] | None,
    from_statuses: Iterable[Any] | None = None,
    where: tuple = (),
    values: dict[str, Any] | None = None,
    comment: str | None = None,
    technician_id=None,
    strict: bool = True,
) -> bool:
    """Move ``work`` to ``to_status`` with one conditional UPDATE.

    The row is matched on the status observed in ``work`` plus any extra
    ``where`` predicates. With ``strict=False`` a lost race returns ``False``
    instead of raising. Nothing is committed here.
    """
    allowed = set(sources_for(to_status))
    if from_statuses is not None:
        allowed &= _values(from_statuses)
    from_status = str(work.status or "")
    if from_status not in allowed:
        if not strict:
            return False
        raise InvalidStateError(
            f"Cannot move work from {from_status or '-'} to {to_status.value}",
            current_status=from_status or None,
        )

    result = db.execute(
        update(WorkRequest)
        .where(WorkRequest.id == work.id, WorkRequest.status == from_status, *where)
        .values(status=to_status.value, **(values or {}))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        if not strict:
            return False
        raise explain_guard_failure(db, work.id, technician_id=technician_id)

    register_status_history(
        db,
        work_id=work.id,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
        comment=comment,
    )
    mirror_booking_status(db, work, to_status)
    return True
