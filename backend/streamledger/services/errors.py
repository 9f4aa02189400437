from __future__ import annotations

from decimal import Decimal
from typing import Any


def _money(value: Decimal | int | str | None) -> str | None:
    if value is None:
        return None
    return format(Decimal(value).normalize(), "f")


class SettlementError(Exception):
    """Typed outcome of a settlement operation that did not go through.

    ``code`` is stable and safe to show to clients, ``context`` carries the
    ids and amounts a caller needs to act on the failure.
    """

    code = "settlement_error"
    http_status = 400
    message = "Settlement failed"

    def __init__(self, message: str | None = None, **context: Any) -> None:
        self.detail = message or self.message
        self.context = {k: v for k, v in context.items() if v is not None}
        super().__init__(self.detail)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.detail, **self.context}


class InsufficientFunds(SettlementError):
    code = "insufficient_funds"
    http_status = 402
    message = "Insufficient balance"

    def __init__(self, required: Decimal, available: Decimal, message: str | None = None) -> None:
        self.required = Decimal(required)
        self.available = Decimal(available)
        super().__init__(message, required=_money(required), available=_money(available))


class AlreadyOwner(SettlementError):
    code = "already_owner"
    message = "You cannot pay yourself"


class MediaIsPublic(SettlementError):
    code = "media_is_public"
    message = "This media is already public"


class InvalidAmount(SettlementError):
    code = "invalid_amount"
    message = "Invalid amount"


class BelowMinimum(SettlementError):
    code = "below_minimum"

    def __init__(self, minimum: Decimal, requested: Decimal) -> None:
        self.minimum = Decimal(minimum)
        self.requested = Decimal(requested)
        super().__init__(
            f"Minimum withdrawal amount is {_money(minimum)}",
            minimum=_money(minimum),
            requested=_money(requested),
        )


class DuplicatePending(SettlementError):
    code = "duplicate_pending"
    http_status = 409
    message = "You already have a pending withdrawal request"

    def __init__(self, pending_id: int | None = None) -> None:
        self.pending_id = pending_id
        super().__init__(None, pending_id=pending_id)


class NotPending(SettlementError):
    code = "not_pending"

    def __init__(self, status: str) -> None:
        self.status = str(status)
        super().__init__(f"Withdrawal is already {self.status.lower()}", status=self.status)


class NotFound(SettlementError):
    code = "not_found"
    http_status = 404

    def __init__(self, kind: str, ident: Any) -> None:
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} not found", kind=kind, id=str(ident))


class Forbidden(SettlementError):
    code = "forbidden"
    http_status = 403
    message = "Forbidden"


class StreamNotLive(SettlementError):
    code = "stream_not_live"
    message = "Stream is not live"


class TransactionFailed(SettlementError):
    code = "transaction_failed"
    http_status = 503
    message = "The operation could not be completed, please try again later"
