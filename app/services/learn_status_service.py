from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import LearnStatus, User
from app.models.schemas import LearnStatusCreate, LearnStatusRecord

logger = structlog.get_logger(__name__)


def _to_record(row: LearnStatus) -> LearnStatusRecord:
    return LearnStatusRecord(
        context_id=row.context_id,
        err_count=row.err_count,
        time_record=row.time_record,
        created_at=row.created_at,
    )


def create_learn_status(db: Session, user: User, payload: LearnStatusCreate) -> LearnStatusRecord:
    # Append-only: every submission is a new row, even for a repeated context_id.
    row = LearnStatus(
        user_id=user.id,
        context_id=payload.context_id,
        err_count=payload.err_count,
        time_record=payload.time_record,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return _to_record(row)


def list_learn_status(db: Session, user: User) -> list[LearnStatusRecord]:
    rows = db.execute(
        select(LearnStatus)
        .where(LearnStatus.user_id == user.id)
        .order_by(LearnStatus.context_id, LearnStatus.created_at, LearnStatus.id)
    ).scalars().all()
    logger.info("learn_status.query", user_id=user.id, row_count=len(rows))
    return [_to_record(r) for r in rows]
