import enum

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.sql import func

from streamledger.core.database import Base
from streamledger.core.timeutil import utcnow
from streamledger.models.wallet import MONEY


class EntryType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    DEBIT = "DEBIT"


class ReferenceType(str, enum.Enum):
    MEDIA_UNLOCK = "media_unlock"
    PAYMENT = "payment"
    WITHDRAWAL = "withdrawal"
    TIP = "tip"
    TIP_RECEIVED = "tip_received"
    STREAM_VIEW = "stream_view"
    STREAM_EARNINGS = "stream_earnings"
    PRIVATE_MESSAGE = "private_message"


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("ix_ledger_entries_account_created", "account_id", "created_at"),
        Index("ix_ledger_entries_reference", "reference_type", "reference_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String, index=True, nullable=False)
    entry_type = Column("type", String(16), nullable=False)
    amount = Column(MONEY, nullable=False)
    currency = Column(String(8), nullable=False)
    balance_after = Column(MONEY, nullable=False)
    reference_type = Column(String(32), index=True, nullable=False)
    reference_id = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    entry_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
