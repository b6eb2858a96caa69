from __future__ import annotations

import uuid
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from app.core.errors import InvalidStateError
from app.models.status_history import WorkStatusHistory


class WorkStatus(str, Enum):
    OPEN = "open"
    TAKEN = "taken"
    APPROVED = "approved"
    UNAVAILABLE = "unavailable"
    DISPATCH = "dispatch"
    INPROGRESS = "inprogress"
    ONHOLD_PARTS = "onhold_parts"
    ESCALATED = "escalated"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"
    CONFIRM = "confirm"


ACTIVE_STATUSES = frozenset({WorkStatus.TAKEN, WorkStatus.APPROVED, WorkStatus.DISPATCH, WorkStatus.INPROGRESS})
ON_HOLD_STATUSES = frozenset({WorkStatus.ONHOLD_PARTS, WorkStatus.ESCALATED, WorkStatus.RESCHEDULED})
UNASSIGNED_STATUSES = frozenset({WorkStatus.OPEN, WorkStatus.UNAVAILABLE})

ISSUE_STATUS = {
    "need_parts": WorkStatus.ONHOLD_PARTS,
    "need_specialist": WorkStatus.ESCALATED,
    "customer_unavailable": WorkStatus.RESCHEDULED,
}
ISSUE_DEFAULT_REMARKS = {
    "need_parts": "Parts required for repair",
    "need_specialist": "Requires senior technician",
    "customer_unavailable": "Customer not available at site",
}

TRANSITIONS: dict[WorkStatus, frozenset[WorkStatus]] = {
    WorkStatus.OPEN: frozenset({WorkStatus.APPROVED, WorkStatus.TAKEN, WorkStatus.UNAVAILABLE}),
    WorkStatus.UNAVAILABLE: frozenset({WorkStatus.TAKEN}),
    WorkStatus.TAKEN: frozenset({WorkStatus.DISPATCH, WorkStatus.INPROGRESS}),
    WorkStatus.APPROVED: frozenset({WorkStatus.DISPATCH, WorkStatus.INPROGRESS}),
    WorkStatus.DISPATCH: frozenset({WorkStatus.INPROGRESS}),
    WorkStatus.INPROGRESS: frozenset(ON_HOLD_STATUSES | {WorkStatus.COMPLETED}),
    WorkStatus.ONHOLD_PARTS: frozenset({WorkStatus.ESCALATED, WorkStatus.RESCHEDULED, WorkStatus.INPROGRESS}),
    WorkStatus.ESCALATED: frozenset({WorkStatus.ONHOLD_PARTS, WorkStatus.RESCHEDULED, WorkStatus.INPROGRESS}),
    WorkStatus.RESCHEDULED: frozenset({WorkStatus.ONHOLD_PARTS, WorkStatus.ESCALATED, WorkStatus.INPROGRESS}),
    WorkStatus.COMPLETED: frozenset({WorkStatus.CONFIRM}),
    WorkStatus.CONFIRM: frozenset(),
}


def parse_status(raw: Any) -> WorkStatus | None:
    try:
        return WorkStatus(str(raw or "").strip().lower())
    except ValueError:
        return None


def transition_allowed(from_status: Any, to_status: Any) -> bool:
    source = parse_status(from_status)
    target = parse_status(to_status)
    if source is None or target is None:
        return False
    return target in TRANSITIONS[source]


def sources_for(to_status: WorkStatus) -> list[str]:
    """Statuses from which ``to_status`` is reachable, as plain strings for SQL filters."""
    return sorted(source.value for source, targets in TRANSITIONS.items() if to_status in targets)


def ensure_transition(from_status: Any, to_status: Any) -> WorkStatus:
    if not transition_allowed(from_status, to_status):
        current = parse_status(from_status)
        raise InvalidStateError(
            f"Cannot move work from {from_status!s} to {to_status!s}",
            current_status=current.value if current else str(from_status or "") or None,
        )
    return WorkStatus(str(to_status).strip().lower())


def requires_technician(status: Any) -> bool:
    parsed = parse_status(status)
    return parsed is not None and parsed not in UNASSIGNED_STATUSES


def register_status_history(
    db: Session,
    *,
    work_id: uuid.UUID,
    from_status: Any,
    to_status: Any,
    actor: dict[str, Any] | None = None,
    comment: str | None = None,
) -> None:
    actor_id = None
    try:
        actor_id = uuid.UUID(str((actor or {}).get("sub") or ""))
    except ValueError:
        actor_id = None
    db.add(
        WorkStatusHistory(
            work_id=work_id,
            from_status=str(getattr(from_status, "value", from_status) or "").strip() or None,
            to_status=str(getattr(to_status, "value", to_status) or "").strip(),
            changed_by_user_id=actor_id,
            changed_by_role=str((actor or {}).get("role") or "").upper() or None,
            comment=(comment or None) and str(comment)[:400],
        )
    )
