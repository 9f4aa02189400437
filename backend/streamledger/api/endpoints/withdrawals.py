from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from streamledger.core.database import get_db
from streamledger.core.permissions import Capability, has_capability, require_capability
from streamledger.core.security import CurrentUser, get_current_user
from streamledger.models.withdrawal import WithdrawalRequest
from streamledger.schemas.settlement import (
    WithdrawalCreateRequest,
    WithdrawalListResponse,
    WithdrawalResponse,
    WithdrawalReviewRequest,
)
from streamledger.services.errors import Forbidden
from streamledger.services.settlement import (
    cancel_withdrawal_request,
    create_withdrawal_request,
    get_withdrawal,
    review_withdrawal,
)


router = APIRouter()


@router.get("/withdrawals", response_model=WithdrawalListResponse)
def list_withdrawals(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    stmt = select(WithdrawalRequest).order_by(WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc())
    if not has_capability(current_user.role, Capability.VIEW_ALL_WITHDRAWALS):
        stmt = stmt.where(WithdrawalRequest.account_id == current_user.id)
    rows = db.execute(stmt).scalars().all()
    return WithdrawalListResponse(withdrawals=[WithdrawalResponse.model_validate(w) for w in rows])


@router.post("/withdrawals", response_model=WithdrawalResponse, status_code=201)
def request_withdrawal(
    body: WithdrawalCreateRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_capability(Capability.REQUEST_WITHDRAWAL)),
):
    request = create_withdrawal_request(db, current_user.id, body.amount)
    return WithdrawalResponse.model_validate(request)


@router.get("/withdrawals/{withdrawal_id}", response_model=WithdrawalResponse)
def get_withdrawal_request(
    withdrawal_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    request = get_withdrawal(db, withdrawal_id)
    if request.account_id != current_user.id and not has_capability(
        current_user.role, Capability.VIEW_ALL_WITHDRAWALS
    ):
        raise Forbidden()
    return WithdrawalResponse.model_validate(request)


@router.patch("/withdrawals/{withdrawal_id}", response_model=WithdrawalResponse)
def review(
    withdrawal_id: int,
    body: WithdrawalReviewRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_capability(Capability.REVIEW_WITHDRAWAL)),
):
    request = review_withdrawal(db, withdrawal_id, body.action, current_user.id, note=body.note)
    return WithdrawalResponse.model_validate(request)


@router.delete("/withdrawals/{withdrawal_id}", response_model=WithdrawalResponse)
def cancel(
    withdrawal_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    request = cancel_withdrawal_request(db, current_user.id, withdrawal_id)
    return WithdrawalResponse.model_validate(request)
