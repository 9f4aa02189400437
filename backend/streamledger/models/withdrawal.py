import enum

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, text
from sqlalchemy.sql import func

from streamledger.core.database import Base
from streamledger.core.timeutil import utcnow
from streamledger.models.wallet import MONEY


class WithdrawalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class WithdrawalRequest(Base):
    __tablename__ = "withdrawal_requests"
    __table_args__ = (
        # at most one PENDING request per account
        Index(
            "uq_withdrawal_requests_one_pending",
            "account_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String, index=True, nullable=False)
    amount = Column(MONEY, nullable=False)
    currency = Column(String(8), nullable=False)
    status = Column(String(16), index=True, nullable=False, default=WithdrawalStatus.PENDING.value)
    reviewed_by = Column(String, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    review_note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
