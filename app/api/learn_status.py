from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.db.models import User
from app.db.session import get_db
from app.models.schemas import LearnStatusCreate, LearnStatusListResponse, SuccessResponse
from app.observability.business import trace_operation
from app.services.auth_dependencies import get_current_user
from app.services.learn_status_service import create_learn_status, list_learn_status
from app.services.user_service import normalize_email

router = APIRouter(prefix="/api/profile", tags=["learn_status"])


@router.post("/learn_status", response_model=SuccessResponse)
async def post_learn_status(
    payload: LearnStatusCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> SuccessResponse:
    # Older clients still send the owner's email; it must be the caller's.
    if payload.user_email is not None and normalize_email(payload.user_email) != user.email:
        raise HTTPException(status_code=403, detail="Cannot record progress for another user")

    with trace_operation(
        "learn_status.create",
        {
            "user.id": user.id,
            "context_id": payload.context_id,
            "err_count": payload.err_count,
            "time_record": payload.time_record,
        },
    ):
        create_learn_status(db, user, payload)
    return SuccessResponse()


@router.get("/learn_status", response_model=LearnStatusListResponse)
async def get_learn_status(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> LearnStatusListResponse:
    with trace_operation("learn_status.query", {"user.id": user.id}) as span:
        rows = list_learn_status(db, user)
        span.set_attribute("learn_status.row_count", len(rows))
    return LearnStatusListResponse(data=rows)
