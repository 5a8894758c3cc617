# puretools/core/security.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from puretools.core.config import require_jwt_secret, settings


@dataclass(frozen=True)
class Identity:
    """The resolved caller, as asserted by the identity provider's token."""

    subject: str
    email: str | None = None
    name: str | None = None


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def create_identity_token(
    subject: str,
    *,
    email: str | None = None,
    name: str | None = None,
    expires_minutes: int = 60,
) -> str:
    """
    Mint a token the way the identity provider does. Used by local tooling and
    tests; production tokens are issued elsewhere and only verified here.
    """
    require_jwt_secret()

    now = _now_utc()
    payload: dict[str, Any] = {
        "sub": subject,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
    }
    if email:
        payload["email"] = email
    if name:
        payload["name"] = name
    if settings.JWT_AUDIENCE:
        payload["aud"] = settings.JWT_AUDIENCE

    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    require_jwt_secret()
    # Let callers decide how to handle JWTError
    return jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        options={"verify_aud": bool(settings.JWT_AUDIENCE)},
    )


def verify_identity_token(token: str) -> Identity:
    try:
        payload = decode_token(token)
    except JWTError:
        raise ValueError("Invalid or expired token")

    subject = str(payload.get("sub") or "").strip()
    if not subject:
        raise ValueError("Token has no subject")

    email = str(payload.get("email") or "").strip().lower() or None
    name = str(payload.get("name") or "").strip() or None
    return Identity(subject=subject, email=email, name=name)
