from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from streamledger.core.database import get_db
from streamledger.core.settings import settings
from streamledger.core.timeutil import as_utc, utcnow
from streamledger.models.profile import Profile
from streamledger.services.unit_of_work import unit_of_work
from streamledger.services.wallet_store import ensure_wallet


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    role: str


def _normalize_email(value: str) -> str:
    return str(value or "").strip().lower()


def _is_admin_email(email: str) -> bool:
    normalized = _normalize_email(email)
    if not normalized:
        return False
    return normalized in (settings.admin_emails or set())


def _require_jwt_secret() -> str:
    if not settings.jwt_secret:
        raise HTTPException(status_code=500, detail="JWT_SECRET is not configured")
    return settings.jwt_secret


def decode_session_token(token: str) -> dict[str, Any]:
    secret = _require_jwt_secret()
    options: dict[str, Any] = {"require": ["exp", "sub"]}
    if not settings.jwt_audience:
        options["verify_aud"] = False
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
        return dict(payload)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid bearer token")


def _decide_role(
    *,
    email_is_admin: bool,
    claim_role: str | None,
    db_role: str | None,
) -> tuple[str, str]:
    dbr = str(db_role or "").strip().lower()
    claimed = str(claim_role or "").strip().lower()
    if dbr == "admin":
        return ("admin", "db_profile")
    if email_is_admin:
        return ("admin", "admin_emails")
    if claimed == "admin":
        return ("admin", "jwt_claim")
    if claimed:
        return (claimed, "jwt_claim")
    if dbr:
        return (dbr, "db_profile")
    return ("user", "default")


def _get_bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = auth.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return token


def get_current_user(request: Request, db: Session = Depends(get_db)) -> CurrentUser:
    token = _get_bearer_token(request)

    claims = decode_session_token(token)
    user_id = str(claims.get("sub") or "").strip()
    email = str(claims.get("email") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    claim_role = str(claims.get("role") or "").strip().lower() or None

    # commits even when nothing changed so the read does not hold a lock
    with unit_of_work(db, "session"):
        profile = db.get(Profile, user_id)
        role, _reason = _decide_role(
            email_is_admin=_is_admin_email(email),
            claim_role=claim_role,
            db_role=(profile.role if profile else None),
        )
        seen_at = utcnow()
        if profile is None:
            profile = Profile(
                id=user_id,
                email=email,
                display_name=(str(claims.get("name") or "").strip() or None),
                role=role,
                last_seen_at=seen_at,
            )
            db.add(profile)
            ensure_wallet(db, user_id)
        else:
            if (profile.role or "") != role:
                profile.role = role
            if email and (profile.email or "") != email:
                profile.email = email
            prev_seen = as_utc(profile.last_seen_at)
            if prev_seen is None or (seen_at - prev_seen).total_seconds() >= 600:
                profile.last_seen_at = seen_at
        db.flush()

    return CurrentUser(id=profile.id, email=profile.email or "", role=profile.role or "user")
