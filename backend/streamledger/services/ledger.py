from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import case, func, select, type_coerce
from sqlalchemy.orm import Session

from streamledger.core.settings import settings
from streamledger.models.ledger_entry import EntryType, LedgerEntry, ReferenceType
from streamledger.models.wallet import MONEY
from streamledger.services.wallet_store import ZERO, as_decimal, get_balance


MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class LedgerFilters:
    entry_type: EntryType | None = None
    reference_types: tuple[str, ...] = ()
    reference_id: str | None = None
    since: datetime | None = None
    until: datetime | None = None


@dataclass(frozen=True)
class Page:
    limit: int = 50
    offset: int = 0
    newest_first: bool = True


@dataclass
class AuditReport:
    account_id: str
    entries: int
    wallet_balance: Decimal
    replayed_balance: Decimal
    consistent: bool
    first_broken_entry_id: int | None = None
    problems: list[str] = field(default_factory=list)


def signed_amount(entry: LedgerEntry) -> Decimal:
    amount = as_decimal(entry.amount)
    return amount if entry.entry_type == EntryType.DEPOSIT.value else -amount


def append(
    db: Session,
    *,
    account_id: str,
    entry_type: EntryType,
    amount: Decimal,
    balance_after: Decimal,
    reference_type: ReferenceType | str,
    reference_id: Any = None,
    description: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> int:
    """Write one immutable entry and return its id.

    ``balance_after`` must be the value returned by the wallet mutation this
    entry records, inside the same unit of work.
    """
    amount = Decimal(amount)
    if amount <= 0:
        raise ValueError("ledger amounts are positive magnitudes")
    entry = LedgerEntry(
        account_id=account_id,
        entry_type=EntryType(entry_type).value,
        amount=amount,
        currency=settings.platform_currency,
        balance_after=Decimal(balance_after),
        reference_type=ReferenceType(reference_type).value,
        reference_id=(str(reference_id) if reference_id is not None else None),
        description=description,
        entry_metadata=(metadata or None),
    )
    db.add(entry)
    db.flush()
    return int(entry.id)


def _filtered(stmt, account_id: str, filters: LedgerFilters | None):
    stmt = stmt.where(LedgerEntry.account_id == account_id)
    if filters is None:
        return stmt
    if filters.entry_type is not None:
        stmt = stmt.where(LedgerEntry.entry_type == EntryType(filters.entry_type).value)
    if filters.reference_types:
        stmt = stmt.where(LedgerEntry.reference_type.in_([ReferenceType(r).value for r in filters.reference_types]))
    if filters.reference_id is not None:
        stmt = stmt.where(LedgerEntry.reference_id == str(filters.reference_id))
    if filters.since is not None:
        stmt = stmt.where(LedgerEntry.created_at >= filters.since)
    if filters.until is not None:
        stmt = stmt.where(LedgerEntry.created_at < filters.until)
    return stmt


def list_by_account(
    db: Session,
    account_id: str,
    filters: LedgerFilters | None = None,
    page: Page | None = None,
) -> list[LedgerEntry]:
    page = page or Page()
    limit = max(1, min(int(page.limit or 50), MAX_PAGE_SIZE))
    offset = max(0, int(page.offset or 0))
    if page.newest_first:
        order = (LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
    else:
        order = (LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
    stmt = _filtered(select(LedgerEntry), account_id, filters).order_by(*order).offset(offset).limit(limit)
    return list(db.execute(stmt).scalars().all())


def count_by_account(db: Session, account_id: str, filters: LedgerFilters | None = None) -> int:
    stmt = _filtered(select(func.count(LedgerEntry.id)), account_id, filters)
    return int(db.execute(stmt).scalar() or 0)


def sum_by_account(db: Session, account_id: str, filters: LedgerFilters | None = None) -> Decimal:
    """Signed sum of the matching entries, computed from stored rows only."""
    signed = case(
        (LedgerEntry.entry_type == EntryType.DEPOSIT.value, LedgerEntry.amount),
        else_=-LedgerEntry.amount,
    )
    stmt = _filtered(select(type_coerce(func.coalesce(func.sum(signed), 0), MONEY)), account_id, filters)
    return as_decimal(db.execute(stmt).scalar())


def sum_grouped(
    db: Session,
    account_id: str,
    group_by: str,
    filters: LedgerFilters | None = None,
) -> list[tuple[str | None, Decimal, int]]:
    column = {"reference_type": LedgerEntry.reference_type, "reference_id": LedgerEntry.reference_id}[group_by]
    signed = case(
        (LedgerEntry.entry_type == EntryType.DEPOSIT.value, LedgerEntry.amount),
        else_=-LedgerEntry.amount,
    )
    stmt = _filtered(
        select(column, type_coerce(func.coalesce(func.sum(signed), 0), MONEY), func.count(LedgerEntry.id)),
        account_id,
        filters,
    ).group_by(column)
    return [(key, as_decimal(total), int(count or 0)) for key, total, count in db.execute(stmt).all()]


def _iter_chronological(db: Session, account_id: str) -> Iterable[LedgerEntry]:
    stmt = (
        select(LedgerEntry)
        .where(LedgerEntry.account_id == account_id)
        .order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
    )
    return db.execute(stmt).scalars()


def audit_account(db: Session, account_id: str) -> AuditReport:
    running = ZERO
    count = 0
    first_broken: int | None = None
    problems: list[str] = []
    for entry in _iter_chronological(db, account_id):
        count += 1
        running += signed_amount(entry)
        recorded = as_decimal(entry.balance_after)
        if recorded != running:
            if first_broken is None:
                first_broken = int(entry.id)
            problems.append(f"entry {entry.id}: balance_after={recorded} expected={running}")
            running = recorded
        if running < 0:
            problems.append(f"entry {entry.id}: negative running balance {running}")
    wallet_balance = get_balance(db, account_id)
    if wallet_balance != running:
        problems.append(f"wallet balance {wallet_balance} != ledger balance {running}")
    return AuditReport(
        account_id=account_id,
        entries=count,
        wallet_balance=wallet_balance,
        replayed_balance=running,
        consistent=not problems,
        first_broken_entry_id=first_broken,
        problems=problems,
    )
