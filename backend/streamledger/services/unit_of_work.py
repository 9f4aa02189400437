from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from streamledger.core.settings import settings
from streamledger.services.errors import SettlementError, TransactionFailed


logger = logging.getLogger(__name__)


def _apply_timeouts(db: Session) -> None:
    bind = db.get_bind()
    if bind.dialect.name != "postgresql":
        return
    db.execute(text(f"SET LOCAL lock_timeout = {int(settings.db_lock_timeout_ms)}"))
    db.execute(text(f"SET LOCAL statement_timeout = {int(settings.db_transaction_timeout_ms)}"))


@contextmanager
def unit_of_work(db: Session, operation: str) -> Iterator[Session]:
    """All-or-nothing scope for one settlement operation.

    Commits when the block exits cleanly. Any exception rolls back every
    write made inside the block. ``IntegrityError`` is re-raised as is so the
    operation owning the unique key can resolve it; other storage errors
    surface as ``TransactionFailed``.
    """
    try:
        _apply_timeouts(db)
        yield db
        db.commit()
    except (SettlementError, IntegrityError):
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("settlement.%s.transaction_failed", operation)
        raise TransactionFailed() from exc
    except Exception:
        db.rollback()
        raise
