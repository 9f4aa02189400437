from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from streamledger.core.database import Base
from streamledger.core.timeutil import utcnow
from streamledger.models.wallet import MONEY


class MediaItem(Base):
    __tablename__ = "media_items"

    id = Column(String, primary_key=True, index=True)
    owner_account_id = Column(String, index=True, nullable=False)
    file_name = Column(String, nullable=True)
    token_cost = Column(MONEY, nullable=False, default=0)
    is_public = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class MediaUnlock(Base):
    __tablename__ = "media_unlocks"
    __table_args__ = (UniqueConstraint("account_id", "media_id", name="uq_media_unlocks_account_media"),)

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String, index=True, nullable=False)
    media_id = Column(String, index=True, nullable=False)
    tokens_paid = Column(MONEY, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
