from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel

from streamledger.models.ledger_entry import LedgerEntry


class BalanceResponse(BaseModel):
    balance: Decimal
    currency: str


class LedgerEntryResponse(BaseModel):
    id: int
    account_id: str
    type: str
    amount: Decimal
    signed_amount: Decimal
    currency: str
    balance_after: Decimal
    reference_type: str
    reference_id: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> "LedgerEntryResponse":
        amount = Decimal(str(entry.amount))
        return cls(
            id=entry.id,
            account_id=entry.account_id,
            type=entry.entry_type,
            amount=amount,
            signed_amount=(amount if entry.entry_type == "DEPOSIT" else -amount),
            currency=entry.currency,
            balance_after=Decimal(str(entry.balance_after)),
            reference_type=entry.reference_type,
            reference_id=entry.reference_id,
            description=entry.description,
            metadata=entry.entry_metadata,
            created_at=entry.created_at,
        )


class LedgerPageResponse(BaseModel):
    account_id: str
    entries: List[LedgerEntryResponse]
    total: int
    limit: int
    offset: int
    current_balance: Decimal


class StreamEarningsResponse(BaseModel):
    stream_id: Optional[str] = None
    total_earnings: Decimal
    transaction_count: int


class EarningsResponse(BaseModel):
    total_earnings: Decimal
    current_balance: Decimal
    last_7_days_earnings: Decimal
    last_30_days_earnings: Decimal
    earnings_by_source: dict[str, Decimal]
    earnings_breakdown: List[StreamEarningsResponse]
    recent_transactions: List[LedgerEntryResponse]


class AuditResponse(BaseModel):
    account_id: str
    entries: int
    wallet_balance: Decimal
    replayed_balance: Decimal
    consistent: bool
    first_broken_entry_id: Optional[int] = None
    problems: List[str]
