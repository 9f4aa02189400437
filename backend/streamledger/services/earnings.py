from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from streamledger.core.timeutil import utcnow
from streamledger.models.ledger_entry import EntryType, LedgerEntry, ReferenceType
from streamledger.services import ledger
from streamledger.services.wallet_store import get_balance


EARNING_REFERENCES: tuple[str, ...] = (
    ReferenceType.STREAM_EARNINGS.value,
    ReferenceType.TIP_RECEIVED.value,
    ReferenceType.MEDIA_UNLOCK.value,
)


@dataclass
class StreamEarnings:
    stream_id: str | None
    total: Decimal
    transactions: int


@dataclass
class EarningsSummary:
    account_id: str
    total_earnings: Decimal
    last_7_days: Decimal
    last_30_days: Decimal
    current_balance: Decimal
    by_source: dict[str, Decimal] = field(default_factory=dict)
    by_stream: list[StreamEarnings] = field(default_factory=list)
    recent: list[LedgerEntry] = field(default_factory=list)


def _earnings_filter(since: datetime | None = None, references: tuple[str, ...] = EARNING_REFERENCES) -> ledger.LedgerFilters:
    return ledger.LedgerFilters(entry_type=EntryType.DEPOSIT, reference_types=references, since=since)


def earnings_summary(db: Session, account_id: str, now: datetime | None = None) -> EarningsSummary:
    now = now or utcnow()
    by_source = {
        str(ref): total
        for ref, total, _count in ledger.sum_grouped(db, account_id, "reference_type", _earnings_filter())
    }
    streams = [
        StreamEarnings(stream_id=ref_id, total=total, transactions=count)
        for ref_id, total, count in ledger.sum_grouped(
            db,
            account_id,
            "reference_id",
            _earnings_filter(references=(ReferenceType.STREAM_EARNINGS.value,)),
        )
    ]
    streams.sort(key=lambda s: s.total, reverse=True)
    return EarningsSummary(
        account_id=account_id,
        total_earnings=ledger.sum_by_account(db, account_id, _earnings_filter()),
        last_7_days=ledger.sum_by_account(db, account_id, _earnings_filter(since=now - timedelta(days=7))),
        last_30_days=ledger.sum_by_account(db, account_id, _earnings_filter(since=now - timedelta(days=30))),
        current_balance=get_balance(db, account_id),
        by_source=by_source,
        by_stream=streams,
        recent=ledger.list_by_account(db, account_id, _earnings_filter(), ledger.Page(limit=10)),
    )
