import unittest
from decimal import Decimal
from unittest import mock

from dbsupport import DatabaseTestCase
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from streamledger.core.database import build_engine, build_sessionmaker
from streamledger.core.settings import settings
from streamledger.models.ledger_entry import EntryType, LedgerEntry, ReferenceType
from streamledger.models.media import MediaUnlock
from streamledger.models.payment import Payment
from streamledger.models.stream import StreamStatus
from streamledger.models.withdrawal import WithdrawalRequest, WithdrawalStatus
from streamledger.services import ledger
from streamledger.services.earnings import earnings_summary
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
from streamledger.services.settlement import (
    bill_stream_view,
    cancel_withdrawal_request,
    charge_private_message,
    create_withdrawal_request,
    credit_payment,
    get_unlock_status,
    normalize_amount,
    review_withdrawal,
    send_tip,
    stream_view_charge,
    unlock_media,
)
from streamledger.services.wallet_store import apply_delta, get_balance


class SettlementTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        patcher = mock.patch.multiple(
            settings,
            min_withdrawal_amount=Decimal("50"),
            stream_tokens_per_minute=Decimal("5"),
            stream_max_billing_seconds=300,
            platform_currency="USD",
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def entries(self, account_id):
        return ledger.list_by_account(self.db, account_id, page=ledger.Page(newest_first=False))

    def assertConsistent(self, *account_ids):
        for account_id in account_ids:
            report = ledger.audit_account(self.db, account_id)
            self.assertTrue(report.consistent, report.problems)


class TestNormalizeAmount(unittest.TestCase):
    def test_accepts_four_places(self):
        self.assertEqual(normalize_amount("1.2345"), Decimal("1.2345"))

    def test_rejects_more_precision_zero_and_negative(self):
        for bad in ("1.23456", "0", "-3", "abc", "NaN"):
            with self.subTest(value=bad):
                with self.assertRaises(InvalidAmount):
                    normalize_amount(bad)

    def test_zero_allowed_on_request(self):
        self.assertEqual(normalize_amount("0", allow_zero=True), Decimal("0"))


class TestUnlockMedia(SettlementTestCase):
    def test_unlock_transfers_cost_to_owner(self):
        self.fund("viewer", 15)
        media_id = self.add_media("owner", 10)

        result = unlock_media(self.db, "viewer", media_id)

        self.assertFalse(result.already_unlocked)
        self.assertEqual(result.new_balance, Decimal("5"))
        self.assertEqual(get_balance(self.db, "viewer"), Decimal("5"))
        self.assertEqual(get_balance(self.db, "owner"), Decimal("10"))

        unlock_entries = (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.reference_type == ReferenceType.MEDIA_UNLOCK.value)
            .order_by(LedgerEntry.id)
            .all()
        )
        self.assertEqual([e.entry_type for e in unlock_entries], [EntryType.DEBIT.value, EntryType.DEPOSIT.value])
        debit, deposit = unlock_entries
        self.assertEqual(debit.account_id, "viewer")
        self.assertEqual(Decimal(str(debit.balance_after)), Decimal("5"))
        self.assertEqual(deposit.account_id, "owner")
        self.assertEqual(Decimal(str(deposit.balance_after)), Decimal("10"))
        self.assertEqual(Decimal(str(debit.amount)), Decimal(str(deposit.amount)))
        self.assertEqual(debit.reference_id, str(result.unlock.id))
        self.assertEqual(deposit.reference_id, str(result.unlock.id))
        self.assertConsistent("viewer", "owner")

    def test_second_unlock_is_not_charged(self):
        self.fund("viewer", 15)
        media_id = self.add_media("owner", 10)
        first = unlock_media(self.db, "viewer", media_id)
        second = unlock_media(self.db, "viewer", media_id)

        self.assertTrue(second.already_unlocked)
        self.assertEqual(second.unlock.id, first.unlock.id)
        self.assertEqual(second.new_balance, Decimal("5"))
        self.assertEqual(self.db.query(MediaUnlock).count(), 1)
        self.assertEqual(len(self.entries("viewer")), 2)

    def test_insufficient_funds_leaves_nothing_behind(self):
        self.fund("viewer", 5)
        media_id = self.add_media("owner", 10)
        with self.assertRaises(InsufficientFunds) as ctx:
            unlock_media(self.db, "viewer", media_id)
        self.assertEqual(ctx.exception.required, Decimal("10"))
        self.assertEqual(ctx.exception.available, Decimal("5"))
        self.db.rollback()
        self.assertEqual(self.db.query(MediaUnlock).count(), 0)
        self.assertEqual(get_balance(self.db, "owner"), Decimal("0"))

    def test_rejections(self):
        self.fund("viewer", 100)
        public_id = self.add_media("owner", 10, is_public=True)
        own_id = self.add_media("viewer", 10)
        with self.assertRaises(NotFound):
            unlock_media(self.db, "viewer", "missing")
        with self.assertRaises(MediaIsPublic):
            unlock_media(self.db, "viewer", public_id)
        with self.assertRaises(AlreadyOwner):
            unlock_media(self.db, "viewer", own_id)
        self.assertEqual(get_balance(self.db, "viewer"), Decimal("100"))

    def test_free_private_media_unlocks_without_entries(self):
        media_id = self.add_media("owner", 0)
        result = unlock_media(self.db, "viewer", media_id)
        self.assertFalse(result.already_unlocked)
        self.assertEqual(result.new_balance, Decimal("0"))
        self.assertEqual(self.entries("viewer"), [])

    def test_unlock_status(self):
        self.fund("viewer", 10)
        media_id = self.add_media("owner", 10)
        self.assertIsNone(get_unlock_status(self.db, "viewer", media_id))
        unlock_media(self.db, "viewer", media_id)
        self.assertIsNotNone(get_unlock_status(self.db, "viewer", media_id))


class TestCreditPayment(SettlementTestCase):
    def test_credit_records_payment_and_deposit(self):
        result = credit_payment(
            self.db,
            provider_ref="sess_123",
            account_id="buyer",
            tokens=Decimal("100"),
            provider="stripe",
            amount=Decimal("9.99"),
            currency="usd",
            payload={"session": "sess_123"},
        )
        self.assertFalse(result.already_processed)
        self.assertEqual(result.balance, Decimal("100"))
        self.assertEqual(result.tokens_added, Decimal("100"))
        self.assertEqual(result.payment.currency, "USD")

        [entry] = self.entries("buyer")
        self.assertEqual(entry.entry_type, EntryType.DEPOSIT.value)
        self.assertEqual(entry.reference_type, ReferenceType.PAYMENT.value)
        self.assertEqual(entry.reference_id, str(result.payment.id))
        self.assertEqual(entry.entry_metadata["provider_ref"], "sess_123")

    def test_redelivery_changes_nothing(self):
        first = credit_payment(self.db, provider_ref="sess_123", account_id="buyer", tokens=Decimal("100"))
        second = credit_payment(self.db, provider_ref="sess_123", account_id="buyer", tokens=Decimal("100"))

        self.assertTrue(second.already_processed)
        self.assertEqual(second.payment.id, first.payment.id)
        self.assertEqual(second.tokens_added, Decimal("0"))
        self.assertEqual(get_balance(self.db, "buyer"), Decimal("100"))
        self.assertEqual(self.db.query(Payment).count(), 1)
        self.assertEqual(len(self.entries("buyer")), 1)
        self.assertConsistent("buyer")

    def test_invalid_credit(self):
        with self.assertRaises(InvalidAmount):
            credit_payment(self.db, provider_ref=" ", account_id="buyer", tokens=Decimal("1"))
        with self.assertRaises(InvalidAmount):
            credit_payment(self.db, provider_ref="sess_1", account_id="buyer", tokens=Decimal("0"))
        self.assertEqual(self.db.query(Payment).count(), 0)


class TestWithdrawals(SettlementTestCase):
    def test_below_minimum_creates_nothing(self):
        self.fund("model", 500)
        with self.assertRaises(BelowMinimum) as ctx:
            create_withdrawal_request(self.db, "model", Decimal("40"))
        self.assertEqual(ctx.exception.minimum, Decimal("50"))
        self.assertEqual(self.db.query(WithdrawalRequest).count(), 0)

    def test_request_requires_balance(self):
        self.fund("model", 60)
        with self.assertRaises(InsufficientFunds):
            create_withdrawal_request(self.db, "model", Decimal("75"))

    def test_request_does_not_move_funds(self):
        self.fund("model", 80)
        request = create_withdrawal_request(self.db, "model", Decimal("60"))
        self.assertEqual(request.status, WithdrawalStatus.PENDING.value)
        self.assertEqual(get_balance(self.db, "model"), Decimal("80"))
        self.assertEqual(len(self.entries("model")), 1)

    def test_single_pending_request(self):
        self.fund("model", 500)
        first = create_withdrawal_request(self.db, "model", Decimal("60"))
        with self.assertRaises(DuplicatePending) as ctx:
            create_withdrawal_request(self.db, "model", Decimal("70"))
        self.assertEqual(ctx.exception.pending_id, first.id)

        review_withdrawal(self.db, first.id, "reject", "admin-1")
        second = create_withdrawal_request(self.db, "model", Decimal("70"))
        self.assertEqual(second.status, WithdrawalStatus.PENDING.value)

    def test_approve_debits_wallet(self):
        self.fund("model", 100)
        request = create_withdrawal_request(self.db, "model", Decimal("60"))
        reviewed = review_withdrawal(self.db, request.id, "approve", "admin-1", note="paid out")

        self.assertEqual(reviewed.status, WithdrawalStatus.APPROVED.value)
        self.assertEqual(reviewed.reviewed_by, "admin-1")
        self.assertEqual(reviewed.review_note, "paid out")
        self.assertEqual(get_balance(self.db, "model"), Decimal("40"))
        last = self.entries("model")[-1]
        self.assertEqual(last.entry_type, EntryType.DEBIT.value)
        self.assertEqual(last.reference_type, ReferenceType.WITHDRAWAL.value)
        self.assertEqual(Decimal(str(last.balance_after)), Decimal("40"))
        self.assertConsistent("model")

    def test_approval_revalidates_balance(self):
        self.fund("model", 100)
        request = create_withdrawal_request(self.db, "model", Decimal("80"))
        media_id = self.add_media("someone", 50)
        unlock_media(self.db, "model", media_id)

        with self.assertRaises(InsufficientFunds):
            review_withdrawal(self.db, request.id, "approve", "admin-1")
        self.db.rollback()
        self.assertEqual(self.db.get(WithdrawalRequest, request.id).status, WithdrawalStatus.PENDING.value)
        self.assertEqual(get_balance(self.db, "model"), Decimal("50"))

    def test_reject_leaves_balance(self):
        self.fund("model", 100)
        request = create_withdrawal_request(self.db, "model", Decimal("60"))
        reviewed = review_withdrawal(self.db, request.id, "reject", "admin-1")
        self.assertEqual(reviewed.status, WithdrawalStatus.REJECTED.value)
        self.assertEqual(get_balance(self.db, "model"), Decimal("100"))
        self.assertEqual(len(self.entries("model")), 1)

    def test_review_only_once(self):
        self.fund("model", 100)
        request = create_withdrawal_request(self.db, "model", Decimal("60"))
        review_withdrawal(self.db, request.id, "approve", "admin-1")
        with self.assertRaises(NotPending):
            review_withdrawal(self.db, request.id, "approve", "admin-1")
        with self.assertRaises(NotFound):
            review_withdrawal(self.db, 9999, "approve", "admin-1")
        with self.assertRaises(InvalidAmount):
            review_withdrawal(self.db, request.id, "maybe", "admin-1")
        self.assertEqual(get_balance(self.db, "model"), Decimal("40"))

    def test_cancel_by_owner_only(self):
        self.fund("model", 100)
        request = create_withdrawal_request(self.db, "model", Decimal("60"))
        with self.assertRaises(Forbidden):
            cancel_withdrawal_request(self.db, "intruder", request.id)
        cancelled = cancel_withdrawal_request(self.db, "model", request.id)
        self.assertEqual(cancelled.status, WithdrawalStatus.CANCELLED.value)
        with self.assertRaises(NotPending):
            cancel_withdrawal_request(self.db, "model", request.id)
        create_withdrawal_request(self.db, "model", Decimal("60"))


class TestStreams(SettlementTestCase):
    def test_tip_moves_tokens_to_model(self):
        self.fund("viewer", 30)
        stream_id = self.add_stream("model")
        result = send_tip(self.db, "viewer", stream_id, Decimal("12"), activity="song request")

        self.assertEqual(result.payer_balance, Decimal("18"))
        self.assertEqual(result.payee_balance, Decimal("12"))
        tip = self.entries("viewer")[-1]
        received = self.entries("model")[-1]
        self.assertEqual(tip.reference_type, ReferenceType.TIP.value)
        self.assertEqual(received.reference_type, ReferenceType.TIP_RECEIVED.value)
        self.assertEqual(received.entry_metadata["activity"], "song request")
        self.assertConsistent("viewer", "model")

    def test_tip_rejections(self):
        self.fund("viewer", 5)
        stream_id = self.add_stream("model")
        with self.assertRaises(InsufficientFunds):
            send_tip(self.db, "viewer", stream_id, Decimal("6"))
        self.db.rollback()
        with self.assertRaises(AlreadyOwner):
            send_tip(self.db, "model", stream_id, Decimal("1"))
        with self.assertRaises(NotFound):
            send_tip(self.db, "viewer", "no-such-stream", Decimal("1"))
        with self.assertRaises(InvalidAmount):
            send_tip(self.db, "viewer", stream_id, Decimal("0"))

    def test_fractional_tips_spend_the_exact_balance(self):
        self.fund("viewer", "0.3")
        stream_id = self.add_stream("model")
        send_tip(self.db, "viewer", stream_id, Decimal("0.1"))
        result = send_tip(self.db, "viewer", stream_id, Decimal("0.2"))
        self.assertEqual(result.payer_balance, Decimal("0"))
        self.assertEqual(get_balance(self.db, "model"), Decimal("0.3"))
        self.assertConsistent("viewer", "model")

    def test_view_charge_is_prorated(self):
        self.assertEqual(stream_view_charge(60), Decimal("5"))
        self.assertEqual(stream_view_charge(30), Decimal("2.5"))
        self.assertEqual(stream_view_charge(1), Decimal("0.0833"))

    def test_bill_stream_view(self):
        self.fund("viewer", 10)
        stream_id = self.add_stream("model")
        result = bill_stream_view(self.db, "viewer", stream_id, 60)
        self.assertTrue(result.charged)
        self.assertEqual(result.tokens_charged, Decimal("5"))
        self.assertEqual(result.viewer_balance, Decimal("5"))
        self.assertEqual(result.model_earned, Decimal("5"))
        self.assertEqual(get_balance(self.db, "model"), Decimal("5"))
        self.assertConsistent("viewer", "model")

    def test_model_watching_own_stream_is_free(self):
        stream_id = self.add_stream("model")
        result = bill_stream_view(self.db, "model", stream_id, 60)
        self.assertFalse(result.charged)
        self.assertEqual(self.entries("model"), [])

    def test_bill_rejections(self):
        self.fund("viewer", 1)
        live_id = self.add_stream("model")
        ended_id = self.add_stream("model", status=StreamStatus.ENDED)
        with self.assertRaises(StreamNotLive):
            bill_stream_view(self.db, "viewer", ended_id, 60)
        with self.assertRaises(InvalidAmount):
            bill_stream_view(self.db, "viewer", live_id, 0)
        with self.assertRaises(InvalidAmount):
            bill_stream_view(self.db, "viewer", live_id, 301)
        with self.assertRaises(InsufficientFunds):
            bill_stream_view(self.db, "viewer", live_id, 60)



class TestPrivateMessages(SettlementTestCase):
    def setUp(self):
        super().setUp()
        patcher = mock.patch.object(settings, "private_message_cost", Decimal("1"))
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_message_debits_sender_only(self):
        self.fund("viewer", 3)
        stream_id = self.add_stream("model")
        result = charge_private_message(self.db, "viewer", stream_id, "msg-1")

        self.assertTrue(result.charged)
        self.assertEqual(result.tokens_charged, Decimal("1"))
        self.assertEqual(result.balance, Decimal("2"))
        self.assertEqual(get_balance(self.db, "model"), Decimal("0"))
        debit = self.entries("viewer")[-1]
        self.assertEqual(debit.entry_type, EntryType.DEBIT.value)
        self.assertEqual(debit.reference_type, ReferenceType.PRIVATE_MESSAGE.value)
        self.assertEqual(debit.reference_id, "msg-1")
        self.assertEqual(debit.entry_metadata["stream_id"], stream_id)
        self.assertEqual(self.entries("model"), [])
        self.assertConsistent("viewer")

    def test_same_message_is_charged_once(self):
        self.fund("viewer", 3)
        stream_id = self.add_stream("model")
        charge_private_message(self.db, "viewer", stream_id, "msg-1")
        again = charge_private_message(self.db, "viewer", stream_id, "msg-1")
        self.assertFalse(again.charged)
        self.assertTrue(again.already_charged)
        self.assertEqual(again.balance, Decimal("2"))
        charge_private_message(self.db, "viewer", stream_id, "msg-2")
        self.assertEqual(get_balance(self.db, "viewer"), Decimal("1"))
        self.assertEqual(len(self.entries("viewer")), 3)

    def test_model_chats_for_free(self):
        stream_id = self.add_stream("model")
        result = charge_private_message(self.db, "model", stream_id, "msg-1")
        self.assertFalse(result.charged)
        self.assertFalse(result.already_charged)
        self.assertEqual(self.entries("model"), [])

    def test_message_rejections(self):
        stream_id = self.add_stream("model")
        with self.assertRaises(InsufficientFunds):
            charge_private_message(self.db, "viewer", stream_id, "msg-1")
        self.assertEqual(self.entries("viewer"), [])
        with self.assertRaises(NotFound):
            charge_private_message(self.db, "viewer", "no-such-stream", "msg-1")
        with self.assertRaises(InvalidAmount):
            charge_private_message(self.db, "viewer", stream_id, "  ")


class TestStorageFailures(SettlementTestCase):
    def test_ledger_failure_rolls_back_unlock(self):
        self.fund("viewer", 15)
        media_id = self.add_media("owner", 10)
        with mock.patch(
            "streamledger.services.ledger.append", side_effect=SQLAlchemyError("disk I/O error")
        ):
            with self.assertRaises(TransactionFailed):
                unlock_media(self.db, "viewer", media_id)

        self.assertFalse(self.db.in_transaction())
        self.assertEqual(get_balance(self.db, "viewer"), Decimal("15"))
        self.assertEqual(get_balance(self.db, "owner"), Decimal("0"))
        self.assertEqual(self.db.query(MediaUnlock).count(), 0)
        self.assertEqual(len(self.entries("viewer")), 1)
        self.assertEqual(self.entries("owner"), [])

    def test_failed_credit_after_debit_rolls_back_both(self):
        self.fund("viewer", 20)
        stream_id = self.add_stream("model")

        def failing_delta(db, account_id, signed_amount):
            if account_id == "model":
                raise OperationalError("UPDATE wallets", {}, Exception("disk I/O error"))
            return apply_delta(db, account_id, signed_amount)

        with mock.patch("streamledger.services.settlement.apply_delta", side_effect=failing_delta):
            with self.assertRaises(TransactionFailed):
                send_tip(self.db, "viewer", stream_id, Decimal("5"))

        self.assertEqual(get_balance(self.db, "viewer"), Decimal("20"))
        self.assertEqual(get_balance(self.db, "model"), Decimal("0"))
        self.assertConsistent("viewer", "model")

    def test_rejected_operation_releases_the_write_lock(self):
        self.fund("viewer", 5)
        media_id = self.add_media("owner", 10)
        with self.assertRaises(InsufficientFunds):
            unlock_media(self.db, "viewer", media_id)
        self.assertFalse(self.db.in_transaction())

        engine = build_engine(self.database_url, lock_timeout_ms=200)
        self.addCleanup(engine.dispose)
        other = build_sessionmaker(engine)()
        self.addCleanup(other.close)
        self.fund("viewer", 1, db=other)
        self.assertEqual(get_balance(self.db, "viewer"), Decimal("6"))


class TestLockTimeout(SettlementTestCase):
    def setUp(self):
        super().setUp()
        self.fund("viewer", 50)
        self.model_stream = self.add_stream("model")
        self.media_id = self.add_media("owner", 10)
        self.fund("model", 100)
        self.request = create_withdrawal_request(self.db, "model", Decimal("60"))

        # a second connection holds the database write lock
        holder = self.engine.connect()
        held = holder.begin()
        holder.exec_driver_sql("UPDATE wallets SET updated_at = updated_at")
        self.addCleanup(holder.close)
        self.addCleanup(held.rollback)

        engine = build_engine(self.database_url, lock_timeout_ms=200)
        self.addCleanup(engine.dispose)
        self.blocked = build_sessionmaker(engine)()
        self.addCleanup(self.blocked.close)

    def test_lock_timeout_surfaces_as_transaction_failed(self):
        calls = {
            "unlock": lambda db: unlock_media(db, "viewer", self.media_id),
            "payment": lambda db: self.fund("viewer", 1, db=db),
            "withdrawal_request": lambda db: create_withdrawal_request(db, "viewer", Decimal("50")),
            "review": lambda db: review_withdrawal(db, self.request.id, "approve", "admin-1"),
            "tip": lambda db: send_tip(db, "viewer", self.model_stream, Decimal("1")),
            "bill": lambda db: bill_stream_view(db, "viewer", self.model_stream, 60),
            "private_message": lambda db: charge_private_message(db, "viewer", self.model_stream, "msg-1"),
        }
        for name, call in calls.items():
            with self.subTest(operation=name):
                with self.assertRaises(TransactionFailed):
                    call(self.blocked)
                self.assertFalse(self.blocked.in_transaction())

class TestEarnings(SettlementTestCase):
    def test_summary_groups_by_source_and_stream(self):
        self.fund("viewer", 100)
        stream_a = self.add_stream("model", title="A")
        stream_b = self.add_stream("model", title="B")
        media_id = self.add_media("model", 7)

        bill_stream_view(self.db, "viewer", stream_a, 120)
        bill_stream_view(self.db, "viewer", stream_b, 60)
        send_tip(self.db, "viewer", stream_a, Decimal("3"))
        unlock_media(self.db, "viewer", media_id)

        summary = earnings_summary(self.db, "model")
        self.assertEqual(summary.total_earnings, Decimal("25"))
        self.assertEqual(summary.last_7_days, Decimal("25"))
        self.assertEqual(summary.current_balance, Decimal("25"))
        self.assertEqual(summary.by_source["stream_earnings"], Decimal("15"))
        self.assertEqual(summary.by_source["tip_received"], Decimal("3"))
        self.assertEqual(summary.by_source["media_unlock"], Decimal("7"))
        self.assertEqual([s.stream_id for s in summary.by_stream], [stream_a, stream_b])
        self.assertEqual(len(summary.recent), 4)

    def test_viewer_spending_is_not_earnings(self):
        self.fund("viewer", 100)
        summary = earnings_summary(self.db, "viewer")
        self.assertEqual(summary.total_earnings, Decimal("0"))
        self.assertEqual(summary.current_balance, Decimal("100"))


if __name__ == "__main__":
    unittest.main()
