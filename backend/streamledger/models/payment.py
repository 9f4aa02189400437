import enum

from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from streamledger.core.database import Base
from streamledger.core.timeutil import utcnow
from streamledger.models.wallet import MONEY


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String, index=True, nullable=False)
    provider = Column(String, index=True, nullable=True)
    provider_ref = Column(String, unique=True, index=True, nullable=False)
    status = Column(String(16), index=True, nullable=False, default=PaymentStatus.SUCCEEDED.value)
    amount = Column(MONEY, nullable=True)
    currency = Column(String(8), nullable=True)
    credits = Column(MONEY, nullable=False)
    webhook_data = Column(JSON, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
