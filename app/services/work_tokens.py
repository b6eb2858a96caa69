from __future__ import annotations

import re
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.work_token_sequence import WorkTokenSequence

TOKEN_RE = re.compile(r"^REQ-(\d{4})-(\d{5,})$")


def format_work_token(year: int, sequence: int) -> str:
    return f"REQ-{int(year):04d}-{int(sequence):05d}"


def _ensure_year_row(db: Session, year: int) -> None:
    exists = db.query(WorkTokenSequence.year).filter(WorkTokenSequence.year == year).first()
    if exists is not None:
        return
    try:
        with db.begin_nested():
            db.add(WorkTokenSequence(year=year, last_value=0))
    except IntegrityError:
        # Another writer created the row first; its counter is shared.
        pass


def next_work_token(db: Session, *, year: int | None = None) -> str:
    """Reserve the next ``REQ-YYYY-NNNNN`` token.

    The increment is a single ``UPDATE ... RETURNING`` so the row lock taken by
    the database serialises concurrent creators within the caller's transaction.
    """
    token_year = int(year or datetime.now(timezone.utc).year)
    _ensure_year_row(db, token_year)
    stmt = (
        update(WorkTokenSequence)
        .where(WorkTokenSequence.year == token_year)
        .values(last_value=WorkTokenSequence.last_value + 1)
        .returning(WorkTokenSequence.last_value)
        .execution_options(synchronize_session=False)
    )
    value = db.execute(stmt).scalar_one()
    return format_work_token(token_year, value)


def parse_work_token(token: str) -> tuple[int, int] | None:
    match = TOKEN_RE.fullmatch(str(token or "").strip().upper())
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))
