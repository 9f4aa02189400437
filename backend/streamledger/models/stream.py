import enum

from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func

from streamledger.core.database import Base


class StreamStatus(str, enum.Enum):
    LIVE = "LIVE"
    PAUSED = "PAUSED"
    ENDED = "ENDED"


class Stream(Base):
    __tablename__ = "streams"

    id = Column(String, primary_key=True, index=True)
    model_account_id = Column(String, index=True, nullable=False)
    title = Column(String, nullable=True)
    status = Column(String(16), index=True, nullable=False, default=StreamStatus.LIVE.value)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
