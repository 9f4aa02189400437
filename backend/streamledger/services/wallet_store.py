from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from streamledger.core.settings import settings
from streamledger.core.timeutil import utcnow
from streamledger.models.wallet import Wallet
from streamledger.services.errors import InsufficientFunds


ZERO = Decimal("0")


def to_amount(value: Decimal | int | str) -> Decimal:
    if isinstance(value, float):
        raise TypeError("monetary amounts must not be floats")
    return Decimal(value)


def as_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def get_wallet(db: Session, account_id: str) -> Wallet | None:
    return db.get(Wallet, account_id, populate_existing=True)


def get_balance(db: Session, account_id: str) -> Decimal:
    balance = db.execute(select(Wallet.balance).where(Wallet.account_id == account_id)).scalar()
    return as_decimal(balance)


def ensure_wallet(db: Session, account_id: str) -> Wallet:
    """Create the wallet with a zero balance if the account has none yet."""
    wallet = get_wallet(db, account_id)
    if wallet is not None:
        return wallet
    try:
        with db.begin_nested():
            wallet = Wallet(account_id=account_id, balance=ZERO, currency=settings.platform_currency)
            db.add(wallet)
    except IntegrityError:
        # another transaction provisioned it first
        wallet = get_wallet(db, account_id)
    return wallet


def lock_wallets(db: Session, account_ids: Iterable[str]) -> dict[str, Wallet]:
    """Row-lock the given wallets in account-id order.

    A fixed lock order keeps two transfers in opposite directions from
    deadlocking on each other.
    """
    ordered = sorted(set(account_ids))
    for account_id in ordered:
        ensure_wallet(db, account_id)
    rows = (
        db.execute(
            select(Wallet)
            .where(Wallet.account_id.in_(ordered))
            .order_by(Wallet.account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalars()
        .all()
    )
    return {w.account_id: w for w in rows}


def apply_delta(db: Session, account_id: str, signed_amount: Decimal | int | str) -> Decimal:
    """Atomically add ``signed_amount`` to the wallet and return the new balance.

    The guard lives in the UPDATE itself so a concurrent debit can never take
    the balance below zero, even if the caller's earlier balance check raced.
    """
    delta = to_amount(signed_amount)
    ensure_wallet(db, account_id)
    result = db.execute(
        update(Wallet)
        .where(Wallet.account_id == account_id)
        .where(Wallet.balance + delta >= 0)
        .values(balance=Wallet.balance + delta, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientFunds(required=-delta, available=get_balance(db, account_id))
    return get_balance(db, account_id)
