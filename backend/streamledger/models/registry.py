from sqlalchemy.engine import Engine

from streamledger.core.database import Base

# every mapped table must be imported before create_all
from streamledger.models.ledger_entry import LedgerEntry  # noqa: F401
from streamledger.models.media import MediaItem, MediaUnlock  # noqa: F401
from streamledger.models.payment import Payment  # noqa: F401
from streamledger.models.profile import Profile  # noqa: F401
from streamledger.models.stream import Stream  # noqa: F401
from streamledger.models.wallet import Wallet  # noqa: F401
from streamledger.models.withdrawal import WithdrawalRequest  # noqa: F401


def create_all(bind: Engine) -> None:
    Base.metadata.create_all(bind=bind)
