import secrets

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from streamledger.core.settings import settings


security = HTTPBasic(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=detail,
        headers={"WWW-Authenticate": "Basic"},
    )


def require_internal_caller(credentials: HTTPBasicCredentials | None = Depends(security)) -> None:
    """Guard for endpoints called by trusted internal services only."""
    if not settings.basic_auth_enabled:
        return

    if settings.basic_auth_username is None or settings.basic_auth_password is None:
        raise RuntimeError("Basic Auth enabled but credentials are not set")

    if credentials is None:
        raise _unauthorized("Authentication required")

    username_ok = secrets.compare_digest(credentials.username, settings.basic_auth_username)
    password_ok = secrets.compare_digest(credentials.password, settings.basic_auth_password)

    if not (username_ok and password_ok):
        raise _unauthorized("Invalid credentials")
