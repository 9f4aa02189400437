from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from streamledger.core.auth import require_internal_caller
from streamledger.core.database import get_db
from streamledger.core.security import CurrentUser, get_current_user
from streamledger.core.settings import settings
from streamledger.models.payment import Payment
from streamledger.schemas.settlement import (
    CreditPaymentRequest,
    CreditPaymentResponse,
    PaymentListResponse,
    PaymentResponse,
    WalletSnapshot,
)
from streamledger.services.settlement import credit_payment
from streamledger.services.wallet_store import get_balance


router = APIRouter()
internal_router = APIRouter(dependencies=[Depends(require_internal_caller)])


@router.get("/payments", response_model=PaymentListResponse)
def list_payments(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    rows = (
        db.execute(
            select(Payment)
            .where(Payment.account_id == current_user.id)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
        )
        .scalars()
        .all()
    )
    return PaymentListResponse(
        payments=[PaymentResponse.model_validate(p) for p in rows],
        balance=get_balance(db, current_user.id),
        currency=settings.platform_currency,
    )


@internal_router.post("/payments/credit", response_model=CreditPaymentResponse)
def credit(body: CreditPaymentRequest, db: Session = Depends(get_db)):
    result = credit_payment(
        db,
        provider_ref=body.provider_ref,
        account_id=body.account_id,
        tokens=body.tokens,
        payload=body.payload,
        provider=body.provider,
        amount=body.amount,
        currency=body.currency,
        description=body.description,
    )
    return CreditPaymentResponse(
        already_processed=result.already_processed,
        message=("Payment already processed" if result.already_processed else "Payment processed successfully"),
        payment=PaymentResponse.model_validate(result.payment),
        wallet=WalletSnapshot(balance=result.balance, tokens_added=result.tokens_added),
    )
