"""Settlement operations.

Each public function here is one all-or-nothing business transaction: the
wallet deltas it applies and the ledger entries recording them commit
together through ``unit_of_work`` or not at all. Argument validation runs
before the unit of work opens; every database read, the balance pre-checks
included, runs inside it so lock waits and timeouts surface as
``TransactionFailed``. ``wallet_store.apply_delta`` has the final word on
funds.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from streamledger.core.settings import settings
from streamledger.core.timeutil import utcnow
from streamledger.models.ledger_entry import EntryType, ReferenceType
from streamledger.models.media import MediaItem, MediaUnlock
from streamledger.models.payment import Payment, PaymentStatus
from streamledger.models.stream import Stream, StreamStatus
from streamledger.models.wallet import QUANTUM
from streamledger.models.withdrawal import WithdrawalRequest, WithdrawalStatus
from streamledger.services import ledger
from streamledger.services.errors import (
    AlreadyOwner,
    BelowMinimum,
    DuplicatePending,
    Forbidden,
    InsufficientFunds,
    InvalidAmount,
    MediaIsPublic,
    NotFound,
    NotPending,
    StreamNotLive,
    TransactionFailed,
)
from streamledger.services.unit_of_work import unit_of_work
from streamledger.services.wallet_store import ZERO, apply_delta, as_decimal, get_balance, lock_wallets


logger = logging.getLogger(__name__)


class ReviewDecision(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


@dataclass
class UnlockResult:
    unlock: MediaUnlock
    already_unlocked: bool
    new_balance: Decimal


@dataclass
class PaymentResult:
    payment: Payment
    already_processed: bool
    balance: Decimal
    tokens_added: Decimal


@dataclass
class TransferResult:
    amount: Decimal
    payer_balance: Decimal
    payee_balance: Decimal


@dataclass
class BillingResult:
    charged: bool
    tokens_charged: Decimal
    viewer_balance: Decimal
    model_earned: Decimal = ZERO


@dataclass
class MessageChargeResult:
    charged: bool
    already_charged: bool
    tokens_charged: Decimal
    balance: Decimal


def normalize_amount(value: Any, *, allow_zero: bool = False) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount()
    if not amount.is_finite() or amount != amount.quantize(QUANTUM):
        raise InvalidAmount("Amounts support at most 4 decimal places")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidAmount("Amount must be positive")
    return amount


def _require_funds(db: Session, account_id: str, required: Decimal) -> Decimal:
    balance = get_balance(db, account_id)
    if balance < required:
        raise InsufficientFunds(required=required, available=balance)
    return balance


def _transfer(
    db: Session,
    *,
    payer_id: str,
    payee_id: str,
    amount: Decimal,
    debit_reference: ReferenceType,
    credit_reference: ReferenceType,
    reference_id: Any,
    debit_description: str,
    credit_description: str,
    debit_metadata: dict[str, Any] | None = None,
    credit_metadata: dict[str, Any] | None = None,
) -> TransferResult:
    lock_wallets(db, [payer_id, payee_id])
    # debit first: a failed debit must never leave a credit behind
    payer_balance = apply_delta(db, payer_id, -amount)
    payee_balance = apply_delta(db, payee_id, amount)
    ledger.append(
        db,
        account_id=payer_id,
        entry_type=EntryType.DEBIT,
        amount=amount,
        balance_after=payer_balance,
        reference_type=debit_reference,
        reference_id=reference_id,
        description=debit_description,
        metadata=debit_metadata,
    )
    ledger.append(
        db,
        account_id=payee_id,
        entry_type=EntryType.DEPOSIT,
        amount=amount,
        balance_after=payee_balance,
        reference_type=credit_reference,
        reference_id=reference_id,
        description=credit_description,
        metadata=credit_metadata,
    )
    return TransferResult(amount=amount, payer_balance=payer_balance, payee_balance=payee_balance)



def _find_unlock(db: Session, viewer_id: str, media_id: str) -> MediaUnlock | None:
    stmt = select(MediaUnlock).where(MediaUnlock.account_id == viewer_id, MediaUnlock.media_id == media_id)
    return db.execute(stmt).scalars().first()


def get_unlock_status(db: Session, viewer_id: str, media_id: str) -> MediaUnlock | None:
    with unit_of_work(db, "unlock_status"):
        return _find_unlock(db, viewer_id, media_id)


def _unlock_replay(db: Session, viewer_id: str, media_id: str, cause: IntegrityError) -> UnlockResult:
    # a concurrent request for the same (viewer, media) won the race
    with unit_of_work(db, "unlock"):
        existing = _find_unlock(db, viewer_id, media_id)
        if existing is None:
            raise TransactionFailed() from cause
        balance = get_balance(db, viewer_id)
    logger.info("settlement.unlock.replay viewer=%s media=%s unlock=%s", viewer_id, media_id, existing.id)
    return UnlockResult(unlock=existing, already_unlocked=True, new_balance=balance)


def unlock_media(db: Session, viewer_id: str, media_id: str) -> UnlockResult:
    try:
        with unit_of_work(db, "unlock"):
            media = db.get(MediaItem, media_id)
            if media is None:
                raise NotFound("media", media_id)
            if media.is_public:
                raise MediaIsPublic()
            if media.owner_account_id == viewer_id:
                raise AlreadyOwner("You cannot unlock your own media")

            existing = _find_unlock(db, viewer_id, media_id)
            if existing is not None:
                result = UnlockResult(unlock=existing, already_unlocked=True, new_balance=get_balance(db, viewer_id))
            else:
                cost = as_decimal(media.token_cost)
                _require_funds(db, viewer_id, cost)
                unlock = MediaUnlock(account_id=viewer_id, media_id=media.id, tokens_paid=cost)
                db.add(unlock)
                db.flush()
                new_balance = get_balance(db, viewer_id)
                if cost > 0:
                    new_balance = _transfer(
                        db,
                        payer_id=viewer_id,
                        payee_id=media.owner_account_id,
                        amount=cost,
                        debit_reference=ReferenceType.MEDIA_UNLOCK,
                        credit_reference=ReferenceType.MEDIA_UNLOCK,
                        reference_id=unlock.id,
                        debit_description=f"Unlocked private media: {media.file_name or media.id}",
                        credit_description="Media unlocked by viewer",
                        debit_metadata={"media_id": media.id},
                        credit_metadata={"media_id": media.id, "viewer_id": viewer_id},
                    ).payer_balance
                result = UnlockResult(unlock=unlock, already_unlocked=False, new_balance=new_balance)
    except IntegrityError as exc:
        return _unlock_replay(db, viewer_id, media_id, exc)

    if result.already_unlocked:
        logger.info("settlement.unlock.replay viewer=%s media=%s unlock=%s", viewer_id, media_id, result.unlock.id)
    else:
        logger.info(
            "settlement.unlock.ok viewer=%s media=%s cost=%s unlock=%s",
            viewer_id,
            media_id,
            result.unlock.tokens_paid,
            result.unlock.id,
        )
    return result


def _find_payment(db: Session, provider_ref: str) -> Payment | None:
    return db.execute(select(Payment).where(Payment.provider_ref == provider_ref)).scalars().first()


def _payment_replay(db: Session, payment: Payment) -> PaymentResult:
    logger.info("settlement.payment.replay provider_ref=%s payment=%s", payment.provider_ref, payment.id)
    return PaymentResult(
        payment=payment,
        already_processed=True,
        balance=get_balance(db, payment.account_id),
        tokens_added=ZERO,
    )


def credit_payment(
    db: Session,
    *,
    provider_ref: str,
    account_id: str,
    tokens: Any,
    payload: dict[str, Any] | None = None,
    provider: str | None = None,
    amount: Any = None,
    currency: str | None = None,
    description: str | None = None,
) -> PaymentResult:
    """Credit purchased tokens once per ``provider_ref``.

    Redelivery of an already recorded provider reference returns the stored
    payment with ``already_processed`` set and changes nothing.
    """
    provider_ref = (provider_ref or "").strip()
    if not provider_ref:
        raise InvalidAmount("provider_ref is required")
    credits = normalize_amount(tokens)
    paid = normalize_amount(amount, allow_zero=True) if amount is not None else None

    try:
        with unit_of_work(db, "payment"):
            existing = _find_payment(db, provider_ref)
            if existing is not None:
                return _payment_replay(db, existing)

            payment = Payment(
                account_id=account_id,
                provider=(provider or None),
                provider_ref=provider_ref,
                status=PaymentStatus.SUCCEEDED.value,
                amount=paid,
                currency=((currency or "").upper() or settings.platform_currency),
                credits=credits,
                webhook_data=(payload or None),
                completed_at=utcnow(),
            )
            db.add(payment)
            db.flush()
            lock_wallets(db, [account_id])
            balance = apply_delta(db, account_id, credits)
            ledger.append(
                db,
                account_id=account_id,
                entry_type=EntryType.DEPOSIT,
                amount=credits,
                balance_after=balance,
                reference_type=ReferenceType.PAYMENT,
                reference_id=payment.id,
                description=(description or f"Purchased {credits.normalize():f} tokens"),
                metadata={"provider": provider, "provider_ref": provider_ref, "payload": payload or {}},
            )
    except IntegrityError as exc:
        with unit_of_work(db, "payment"):
            existing = _find_payment(db, provider_ref)
            if existing is None:
                raise TransactionFailed() from exc
            return _payment_replay(db, existing)

    logger.info(
        "settlement.payment.ok account=%s provider_ref=%s tokens=%s balance=%s",
        account_id,
        provider_ref,
        credits,
        balance,
    )
    return PaymentResult(payment=payment, already_processed=False, balance=balance, tokens_added=credits)


def _find_pending_withdrawal(db: Session, account_id: str) -> WithdrawalRequest | None:
    stmt = select(WithdrawalRequest).where(
        WithdrawalRequest.account_id == account_id,
        WithdrawalRequest.status == WithdrawalStatus.PENDING.value,
    )
    return db.execute(stmt).scalars().first()


def create_withdrawal_request(db: Session, account_id: str, amount: Any) -> WithdrawalRequest:
    requested = normalize_amount(amount)
    minimum = settings.min_withdrawal_amount
    if requested < minimum:
        raise BelowMinimum(minimum=minimum, requested=requested)

    try:
        with unit_of_work(db, "withdrawal_request"):
            # checked, not reserved: the balance stays spendable until approval
            _require_funds(db, account_id, requested)
            pending = _find_pending_withdrawal(db, account_id)
            if pending is not None:
                raise DuplicatePending(pending.id)
            request = WithdrawalRequest(
                account_id=account_id,
                amount=requested,
                currency=settings.platform_currency,
                status=WithdrawalStatus.PENDING.value,
            )
            db.add(request)
            db.flush()
    except IntegrityError as exc:
        with unit_of_work(db, "withdrawal_request"):
            pending = _find_pending_withdrawal(db, account_id)
            if pending is None:
                raise TransactionFailed() from exc
            raise DuplicatePending(pending.id) from exc

    logger.info("settlement.withdrawal.requested account=%s amount=%s request=%s", account_id, requested, request.id)
    return request


def _load_withdrawal(db: Session, request_id: int) -> WithdrawalRequest:
    request = db.get(WithdrawalRequest, request_id, populate_existing=True)
    if request is None:
        raise NotFound("withdrawal", request_id)
    return request


def get_withdrawal(db: Session, request_id: int) -> WithdrawalRequest:
    with unit_of_work(db, "withdrawal_get"):
        return _load_withdrawal(db, request_id)


def _close_pending(db: Session, request_id: int, status: WithdrawalStatus, **values: Any) -> WithdrawalRequest:
    result = db.execute(
        update(WithdrawalRequest)
        .where(WithdrawalRequest.id == request_id)
        .where(WithdrawalRequest.status == WithdrawalStatus.PENDING.value)
        .values(status=status.value, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotPending(_load_withdrawal(db, request_id).status)
    return _load_withdrawal(db, request_id)


def review_withdrawal(
    db: Session,
    request_id: int,
    decision: ReviewDecision | str,
    reviewer_id: str,
    note: str | None = None,
) -> WithdrawalRequest:
    try:
        decision = ReviewDecision(str(decision).strip().lower())
    except ValueError:
        raise InvalidAmount("Invalid action. Use 'approve' or 'reject'")

    reviewed_at = utcnow()
    with unit_of_work(db, f"withdrawal_{decision.value}"):
        request = _load_withdrawal(db, request_id)
        if request.status != WithdrawalStatus.PENDING.value:
            raise NotPending(request.status)

        if decision == ReviewDecision.REJECT:
            request = _close_pending(
                db,
                request.id,
                WithdrawalStatus.REJECTED,
                reviewed_by=reviewer_id,
                reviewed_at=reviewed_at,
                review_note=(note or "Withdrawal request rejected"),
            )
            balance = None
        else:
            amount = as_decimal(request.amount)
            lock_wallets(db, [request.account_id])
            _require_funds(db, request.account_id, amount)
            request = _close_pending(
                db,
                request.id,
                WithdrawalStatus.APPROVED,
                reviewed_by=reviewer_id,
                reviewed_at=reviewed_at,
                review_note=(note or "Withdrawal approved"),
            )
            balance = apply_delta(db, request.account_id, -amount)
            ledger.append(
                db,
                account_id=request.account_id,
                entry_type=EntryType.DEBIT,
                amount=amount,
                balance_after=balance,
                reference_type=ReferenceType.WITHDRAWAL,
                reference_id=request.id,
                description=f"Withdrawal approved - {amount.normalize():f} {request.currency}",
                metadata={"withdrawal_id": request.id, "approved_by": reviewer_id},
            )

    if balance is None:
        logger.info("settlement.withdrawal.rejected request=%s reviewer=%s", request.id, reviewer_id)
    else:
        logger.info(
            "settlement.withdrawal.approved request=%s account=%s amount=%s balance=%s",
            request.id,
            request.account_id,
            request.amount,
            balance,
        )
    return request


def cancel_withdrawal_request(db: Session, account_id: str, request_id: int) -> WithdrawalRequest:
    with unit_of_work(db, "withdrawal_cancel"):
        request = _load_withdrawal(db, request_id)
        if request.account_id != account_id:
            raise Forbidden()
        if request.status != WithdrawalStatus.PENDING.value:
            raise NotPending(request.status)
        request = _close_pending(db, request.id, WithdrawalStatus.CANCELLED)
    logger.info("settlement.withdrawal.cancelled request=%s account=%s", request.id, account_id)
    return request


def _get_stream(db: Session, stream_id: str) -> Stream:
    stream = db.get(Stream, stream_id)
    if stream is None:
        raise NotFound("stream", stream_id)
    return stream


def send_tip(
    db: Session,
    viewer_id: str,
    stream_id: str,
    tokens: Any,
    activity: str | None = None,
) -> TransferResult:
    amount = normalize_amount(tokens)
    label = f' for "{activity}"' if activity else ""

    with unit_of_work(db, "tip"):
        stream = _get_stream(db, stream_id)
        if stream.model_account_id == viewer_id:
            raise AlreadyOwner("You cannot tip yourself")
        _require_funds(db, viewer_id, amount)
        result = _transfer(
            db,
            payer_id=viewer_id,
            payee_id=stream.model_account_id,
            amount=amount,
            debit_reference=ReferenceType.TIP,
            credit_reference=ReferenceType.TIP_RECEIVED,
            reference_id=stream.id,
            debit_description=f"Tipped {amount.normalize():f} tokens{label}",
            credit_description=f"Received tip: {amount.normalize():f} tokens{label}",
            debit_metadata={"stream_id": stream.id, "model_id": stream.model_account_id, "activity": activity},
            credit_metadata={"stream_id": stream.id, "viewer_id": viewer_id, "activity": activity},
        )
    logger.info("settlement.tip.ok viewer=%s stream=%s tokens=%s", viewer_id, stream_id, amount)
    return result


def stream_view_charge(watch_seconds: int) -> Decimal:
    per_minute = settings.stream_tokens_per_minute
    return (per_minute * Decimal(int(watch_seconds)) / Decimal(60)).quantize(QUANTUM)


def bill_stream_view(db: Session, viewer_id: str, stream_id: str, watch_seconds: int) -> BillingResult:
    try:
        watch_seconds = int(watch_seconds)
    except (TypeError, ValueError):
        raise InvalidAmount("Invalid watch time")
    if watch_seconds <= 0 or watch_seconds > settings.stream_max_billing_seconds:
        raise InvalidAmount(
            f"Invalid watch time. Must be between 1 and {settings.stream_max_billing_seconds} seconds."
        )
    charge = stream_view_charge(watch_seconds)

    with unit_of_work(db, "stream_bill"):
        stream = _get_stream(db, stream_id)
        if stream.status != StreamStatus.LIVE.value:
            raise StreamNotLive()
        if stream.model_account_id == viewer_id or charge <= 0:
            return BillingResult(charged=False, tokens_charged=ZERO, viewer_balance=get_balance(db, viewer_id))

        _require_funds(db, viewer_id, charge)
        title = stream.title or stream.id
        result = _transfer(
            db,
            payer_id=viewer_id,
            payee_id=stream.model_account_id,
            amount=charge,
            debit_reference=ReferenceType.STREAM_VIEW,
            credit_reference=ReferenceType.STREAM_EARNINGS,
            reference_id=stream.id,
            debit_description=f"Watched stream: {title} ({charge.normalize():f} tokens)",
            credit_description=f"Earnings from stream: {title}",
            debit_metadata={"stream_id": stream.id, "watch_time_seconds": watch_seconds},
            credit_metadata={"stream_id": stream.id, "viewer_id": viewer_id, "watch_time_seconds": watch_seconds},
        )
    logger.info("settlement.stream_bill.ok viewer=%s stream=%s tokens=%s", viewer_id, stream_id, charge)
    return BillingResult(
        charged=True,
        tokens_charged=charge,
        viewer_balance=result.payer_balance,
        model_earned=charge,
    )


def _find_message_charge(db: Session, sender_id: str, message_ref: str):
    filters = ledger.LedgerFilters(
        entry_type=EntryType.DEBIT,
        reference_types=(ReferenceType.PRIVATE_MESSAGE.value,),
        reference_id=message_ref,
    )
    found = ledger.list_by_account(db, sender_id, filters, ledger.Page(limit=1))
    return found[0] if found else None


def charge_private_message(db: Session, sender_id: str, stream_id: str, message_ref: str) -> MessageChargeResult:
    """Debit the flat private-chat fee for one message.

    The stream's model chats for free. The fee is not credited to anyone.
    A ``message_ref`` that was already charged is not charged again.
    """
    message_ref = str(message_ref or "").strip()
    if not message_ref:
        raise InvalidAmount("message_ref is required")
    cost = normalize_amount(settings.private_message_cost, allow_zero=True)

    with unit_of_work(db, "private_message"):
        stream = _get_stream(db, stream_id)
        if stream.model_account_id == sender_id or cost == 0:
            return MessageChargeResult(
                charged=False,
                already_charged=False,
                tokens_charged=ZERO,
                balance=get_balance(db, sender_id),
            )

        lock_wallets(db, [sender_id])
        previous = _find_message_charge(db, sender_id, message_ref)
        if previous is not None:
            result = MessageChargeResult(
                charged=False,
                already_charged=True,
                tokens_charged=ZERO,
                balance=get_balance(db, sender_id),
            )
        else:
            balance = apply_delta(db, sender_id, -cost)
            ledger.append(
                db,
                account_id=sender_id,
                entry_type=EntryType.DEBIT,
                amount=cost,
                balance_after=balance,
                reference_type=ReferenceType.PRIVATE_MESSAGE,
                reference_id=message_ref,
                description="Private chat message debit",
                metadata={"stream_id": stream.id, "model_id": stream.model_account_id},
            )
            result = MessageChargeResult(charged=True, already_charged=False, tokens_charged=cost, balance=balance)

    if result.already_charged:
        logger.info("settlement.private_message.replay sender=%s message=%s", sender_id, message_ref)
    else:
        logger.info(
            "settlement.private_message.ok sender=%s stream=%s message=%s balance=%s",
            sender_id,
            stream_id,
            message_ref,
            result.balance,
        )
    return result
