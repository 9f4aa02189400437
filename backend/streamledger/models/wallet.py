from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, Numeric, String
from sqlalchemy.sql import func
from sqlalchemy.types import TypeDecorator

from streamledger.core.database import Base
from streamledger.core.timeutil import utcnow


MONEY_SCALE = 4
QUANTUM = Decimal(1).scaleb(-MONEY_SCALE)


class Money(TypeDecorator):
    """Exact decimal amount with four fractional digits.

    ``NUMERIC(20, 4)`` where the database has a real decimal type. SQLite
    would store it as a binary float, so there the column holds the amount
    in ten-thousandths as an integer and all arithmetic stays exact.
    """

    impl = Numeric(20, MONEY_SCALE)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(BigInteger())
        return dialect.type_descriptor(Numeric(20, MONEY_SCALE))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            value = str(value)
        amount = Decimal(value).quantize(QUANTUM)
        if dialect.name == "sqlite":
            return int(amount.scaleb(MONEY_SCALE))
        return amount

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "sqlite":
            return Decimal(int(value)).scaleb(-MONEY_SCALE)
        return Decimal(value)

    def coerce_compared_value(self, op, value):
        return self


MONEY = Money()


class Wallet(Base):
    """Current spendable balance of one account.

    Rows are never deleted and ``balance`` only ever moves by signed deltas
    applied inside a unit of work (see ``services.wallet_store``).
    """

    __tablename__ = "wallets"
    __table_args__ = (CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),)

    account_id = Column(String, primary_key=True, index=True)
    balance = Column(MONEY, nullable=False, default=0)
    currency = Column(String(8), nullable=False, default="USD")
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
