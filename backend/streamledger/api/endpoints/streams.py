from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from streamledger.core.database import get_db
from streamledger.core.permissions import Capability, require_capability
from streamledger.core.security import CurrentUser
from streamledger.schemas.settlement import (
    BillRequest,
    BillResponse,
    PrivateMessageChargeRequest,
    PrivateMessageChargeResponse,
    TipRequest,
    TipResponse,
)
from streamledger.services.settlement import bill_stream_view, charge_private_message, send_tip


router = APIRouter()


@router.post("/streams/{stream_id}/tip", response_model=TipResponse)
def tip(
    stream_id: str,
    body: TipRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_capability(Capability.SEND_TIP)),
):
    activity = (body.activity or "").strip() or None
    result = send_tip(db, current_user.id, stream_id, body.tokens, activity=activity)
    return TipResponse(
        tokens=result.amount,
        activity=activity,
        model_earned=result.amount,
        remaining_balance=result.payer_balance,
    )


@router.post("/streams/{stream_id}/bill", response_model=BillResponse)
def bill(
    stream_id: str,
    body: BillRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_capability(Capability.WATCH_STREAM)),
):
    result = bill_stream_view(db, current_user.id, stream_id, body.watch_time_seconds)
    return BillResponse(
        charged=result.charged,
        tokens_charged=result.tokens_charged,
        model_earned=result.model_earned,
        remaining_balance=result.viewer_balance,
        watch_time_seconds=body.watch_time_seconds,
    )


@router.post("/streams/{stream_id}/private-messages/charge", response_model=PrivateMessageChargeResponse)
def private_message_charge(
    stream_id: str,
    body: PrivateMessageChargeRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_capability(Capability.SEND_PRIVATE_MESSAGE)),
):
    result = charge_private_message(db, current_user.id, stream_id, body.message_ref)
    return PrivateMessageChargeResponse(
        charged=result.charged,
        already_charged=result.already_charged,
        tokens_charged=result.tokens_charged,
        remaining_balance=result.balance,
    )
