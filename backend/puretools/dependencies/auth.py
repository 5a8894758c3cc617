# puretools/dependencies/auth.py
from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from puretools.core.database import get_db
from puretools.core.security import Identity, verify_identity_token
from puretools.models.user import User
from puretools.services.users import ensure_user

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_identity(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Identity:
    """Resolve the caller from `Authorization: Bearer <token>` without touching the database."""
    if not creds or creds.scheme.lower() != "bearer":
        raise _unauthorized("Missing Authorization header")
    try:
        return verify_identity_token(creds.credentials)
    except ValueError:
        raise _unauthorized("Invalid or expired token")


def get_current_user(
    request: Request,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
) -> User:
    """
    Returns the User for the token subject, provisioning it (with the welcome
    bonus) on the first authenticated request.
    """
    try:
        user = ensure_user(db, identity)
    except ValueError as exc:
        logger.warning("Identity %s could not be linked: %s", identity.subject, exc)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    request.state.user = user
    return user
