from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from streamledger.core.database import get_db
from streamledger.core.permissions import Capability, require_capability
from streamledger.schemas.wallet import AuditResponse
from streamledger.services.ledger import audit_account


router = APIRouter(dependencies=[Depends(require_capability(Capability.AUDIT_LEDGER))])


@router.get("/admin/accounts/{account_id}/audit", response_model=AuditResponse)
def audit(account_id: str, db: Session = Depends(get_db)):
    report = audit_account(db, account_id)
    return AuditResponse(
        account_id=report.account_id,
        entries=report.entries,
        wallet_balance=report.wallet_balance,
        replayed_balance=report.replayed_balance,
        consistent=report.consistent,
        first_broken_entry_id=report.first_broken_entry_id,
        problems=report.problems,
    )
