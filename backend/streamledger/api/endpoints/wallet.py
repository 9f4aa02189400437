from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from streamledger.core.database import get_db
from streamledger.core.permissions import Capability, require_capability
from streamledger.core.security import CurrentUser, get_current_user
from streamledger.core.settings import settings
from streamledger.models.ledger_entry import EntryType, ReferenceType
from streamledger.schemas.wallet import (
    BalanceResponse,
    EarningsResponse,
    LedgerEntryResponse,
    LedgerPageResponse,
    StreamEarningsResponse,
)
from streamledger.services import ledger
from streamledger.services.earnings import earnings_summary
from streamledger.services.wallet_store import get_wallet


router = APIRouter()


def _parse_filters(
    entry_type: str | None,
    reference_type: str | None,
    since: datetime | None,
    until: datetime | None,
) -> ledger.LedgerFilters:
    try:
        parsed_type = EntryType(entry_type.strip().upper()) if entry_type else None
        refs = tuple(
            ReferenceType(r.strip().lower()).value for r in (reference_type or "").split(",") if r.strip()
        )
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid ledger filter")
    return ledger.LedgerFilters(entry_type=parsed_type, reference_types=refs, since=since, until=until)


@router.get("/wallet/balance", response_model=BalanceResponse)
def wallet_balance(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    wallet = get_wallet(db, current_user.id)
    if wallet is None:
        return BalanceResponse(balance=0, currency=settings.platform_currency)
    return BalanceResponse(balance=wallet.balance, currency=wallet.currency)


@router.get("/wallet/ledger", response_model=LedgerPageResponse)
def wallet_ledger(
    type: str | None = None,
    reference_type: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    filters = _parse_filters(type, reference_type, since, until)
    limit = max(1, min(int(limit or 50), ledger.MAX_PAGE_SIZE))
    offset = max(0, int(offset or 0))
    entries = ledger.list_by_account(db, current_user.id, filters, ledger.Page(limit=limit, offset=offset))
    wallet = get_wallet(db, current_user.id)
    return LedgerPageResponse(
        account_id=current_user.id,
        entries=[LedgerEntryResponse.from_entry(e) for e in entries],
        total=ledger.count_by_account(db, current_user.id, filters),
        limit=limit,
        offset=offset,
        current_balance=(wallet.balance if wallet else 0),
    )


@router.get("/earnings", response_model=EarningsResponse)
def earnings(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_capability(Capability.VIEW_EARNINGS)),
):
    summary = earnings_summary(db, current_user.id)
    return EarningsResponse(
        total_earnings=summary.total_earnings,
        current_balance=summary.current_balance,
        last_7_days_earnings=summary.last_7_days,
        last_30_days_earnings=summary.last_30_days,
        earnings_by_source=summary.by_source,
        earnings_breakdown=[
            StreamEarningsResponse(stream_id=s.stream_id, total_earnings=s.total, transaction_count=s.transactions)
            for s in summary.by_stream
        ],
        recent_transactions=[LedgerEntryResponse.from_entry(e) for e in summary.recent],
    )
