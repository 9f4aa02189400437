from __future__ import annotations

import enum
from typing import Callable

from fastapi import Depends, HTTPException

from streamledger.core.security import CurrentUser, get_current_user


class Role(str, enum.Enum):
    USER = "user"
    MODEL = "model"
    ADMIN = "admin"


class Capability(str, enum.Enum):
    UNLOCK_MEDIA = "unlock_media"
    SEND_TIP = "send_tip"
    WATCH_STREAM = "watch_stream"
    SEND_PRIVATE_MESSAGE = "send_private_message"
    REQUEST_WITHDRAWAL = "request_withdrawal"
    REVIEW_WITHDRAWAL = "review_withdrawal"
    VIEW_EARNINGS = "view_earnings"
    VIEW_ALL_WITHDRAWALS = "view_all_withdrawals"
    AUDIT_LEDGER = "audit_ledger"


_VIEWER: frozenset[Capability] = frozenset(
    {Capability.UNLOCK_MEDIA, Capability.SEND_TIP, Capability.WATCH_STREAM, Capability.SEND_PRIVATE_MESSAGE}
)

ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.USER: _VIEWER,
    Role.MODEL: _VIEWER | {Capability.REQUEST_WITHDRAWAL, Capability.VIEW_EARNINGS},
    Role.ADMIN: frozenset(Capability),
}

# roles the identity provider may send under another name
ROLE_ALIASES: dict[str, Role] = {"viewer": Role.USER, "creator": Role.MODEL}


def normalize_role(raw: str | None) -> Role | None:
    value = str(raw or "").strip().lower()
    if not value:
        return None
    if value in ROLE_ALIASES:
        return ROLE_ALIASES[value]
    try:
        return Role(value)
    except ValueError:
        return None


def has_capability(role: str | None, capability: Capability) -> bool:
    resolved = normalize_role(role)
    if resolved is None:
        return False
    return capability in ROLE_CAPABILITIES.get(resolved, frozenset())


def require_capability(capability: Capability) -> Callable[..., CurrentUser]:
    def _dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not has_capability(user.role, capability):
            raise HTTPException(status_code=403, detail=f"Missing capability: {capability.value}")
        return user

    return _dependency
