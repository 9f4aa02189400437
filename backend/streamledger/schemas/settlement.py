from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UnlockRequest(BaseModel):
    media_id: str


class MediaUnlockResponse(BaseModel):
    id: int
    account_id: str
    media_id: str
    tokens_paid: Decimal
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UnlockResponse(BaseModel):
    success: bool = True
    already_unlocked: bool
    unlock: MediaUnlockResponse
    new_balance: Decimal
    message: str


class UnlockStatusResponse(BaseModel):
    unlocked: bool
    unlocked_at: Optional[datetime] = None


class TipRequest(BaseModel):
    tokens: Decimal
    activity: Optional[str] = Field(default=None, max_length=200)


class TipResponse(BaseModel):
    success: bool = True
    tokens: Decimal
    activity: Optional[str] = None
    model_earned: Decimal
    remaining_balance: Decimal

    model_config = ConfigDict(protected_namespaces=())


class BillRequest(BaseModel):
    watch_time_seconds: int = 60


class BillResponse(BaseModel):
    success: bool = True
    charged: bool
    tokens_charged: Decimal
    model_earned: Decimal
    remaining_balance: Decimal
    watch_time_seconds: int

    model_config = ConfigDict(protected_namespaces=())


class PrivateMessageChargeRequest(BaseModel):
    message_ref: str = Field(min_length=1, max_length=200)


class PrivateMessageChargeResponse(BaseModel):
    success: bool = True
    charged: bool
    already_charged: bool
    tokens_charged: Decimal
    remaining_balance: Decimal


class CreditPaymentRequest(BaseModel):
    provider_ref: str = Field(min_length=1)
    account_id: str = Field(min_length=1)
    tokens: Decimal
    provider: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    description: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)


class PaymentResponse(BaseModel):
    id: int
    account_id: str
    provider: Optional[str] = None
    provider_ref: str
    status: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    credits: Decimal
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WalletSnapshot(BaseModel):
    balance: Decimal
    tokens_added: Decimal


class CreditPaymentResponse(BaseModel):
    success: bool = True
    already_processed: bool
    message: str
    payment: PaymentResponse
    wallet: WalletSnapshot


class PaymentListResponse(BaseModel):
    payments: List[PaymentResponse]
    balance: Decimal
    currency: str


class WithdrawalCreateRequest(BaseModel):
    amount: Decimal


class WithdrawalReviewRequest(BaseModel):
    action: str
    note: Optional[str] = None


class WithdrawalResponse(BaseModel):
    id: int
    account_id: str
    amount: Decimal
    currency: str
    status: str
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_note: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WithdrawalListResponse(BaseModel):
    withdrawals: List[WithdrawalResponse]
