import os
import tempfile
from decimal import Decimal

from streamledger.core.database import build_engine, build_sessionmaker
from streamledger.models.media import MediaItem
from streamledger.models.registry import create_all
from streamledger.services import ledger
from streamledger.services.errors import BelowMinimum, DuplicatePending, InsufficientFunds
from streamledger.services.settlement import create_withdrawal_request, credit_payment, review_withdrawal, unlock_media
from streamledger.services.wallet_store import get_balance


def main() -> None:
    tmpdir = tempfile.mkdtemp(prefix="streamledger-verify-")
    engine = build_engine("sqlite:///" + os.path.join(tmpdir, "verify.db"))
    create_all(engine)
    SessionLocal = build_sessionmaker(engine)

    db = SessionLocal()
    try:
        credit_payment(db, provider_ref="sess_123", account_id="viewer-1", tokens=Decimal("15"))
        replay = credit_payment(db, provider_ref="sess_123", account_id="viewer-1", tokens=Decimal("15"))
        assert replay.already_processed
        bal = get_balance(db, "viewer-1")
        assert bal == Decimal("15"), bal

        db.add(MediaItem(id="media-1", owner_account_id="model-1", token_cost=Decimal("10"), is_public=False))
        db.commit()
        result = unlock_media(db, "viewer-1", "media-1")
        assert result.new_balance == Decimal("5"), result.new_balance
        assert get_balance(db, "model-1") == Decimal("10")
        assert unlock_media(db, "viewer-1", "media-1").already_unlocked

        db.add(MediaItem(id="media-2", owner_account_id="model-1", token_cost=Decimal("10"), is_public=False))
        db.commit()
        try:
            unlock_media(db, "viewer-1", "media-2")
            raise AssertionError("expected InsufficientFunds")
        except InsufficientFunds:
            db.rollback()

        try:
            create_withdrawal_request(db, "model-1", Decimal("40"))
            raise AssertionError("expected BelowMinimum")
        except BelowMinimum:
            pass

        credit_payment(db, provider_ref="sess_456", account_id="model-1", tokens=Decimal("90"))
        request = create_withdrawal_request(db, "model-1", Decimal("60"))
        try:
            create_withdrawal_request(db, "model-1", Decimal("50"))
            raise AssertionError("expected DuplicatePending")
        except DuplicatePending:
            pass
        review_withdrawal(db, request.id, "approve", "admin-1")
        bal2 = get_balance(db, "model-1")
        assert bal2 == Decimal("40"), bal2

        for account_id in ("viewer-1", "model-1"):
            report = ledger.audit_account(db, account_id)
            assert report.consistent, report.problems
    finally:
        db.close()
        engine.dispose()


if __name__ == "__main__":
    main()
    print("OK")
