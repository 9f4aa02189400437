from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from streamledger.core.database import get_db
from streamledger.core.permissions import Capability, require_capability
from streamledger.core.security import CurrentUser, get_current_user
from streamledger.schemas.settlement import MediaUnlockResponse, UnlockRequest, UnlockResponse, UnlockStatusResponse
from streamledger.services.settlement import get_unlock_status, unlock_media


router = APIRouter()


@router.post("/media/unlock", response_model=UnlockResponse)
def unlock(
    body: UnlockRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_capability(Capability.UNLOCK_MEDIA)),
):
    result = unlock_media(db, current_user.id, body.media_id)
    return UnlockResponse(
        already_unlocked=result.already_unlocked,
        unlock=MediaUnlockResponse.model_validate(result.unlock),
        new_balance=result.new_balance,
        message=(
            "You have already unlocked this media" if result.already_unlocked else "Media unlocked successfully"
        ),
    )


@router.get("/media/unlock", response_model=UnlockStatusResponse)
def unlock_status(
    media_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    found = get_unlock_status(db, current_user.id, media_id)
    return UnlockStatusResponse(unlocked=found is not None, unlocked_at=(found.created_at if found else None))
