from __future__ import annotations

import json
import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request, status

from puretools.core.config import settings
from puretools.dependencies.auth import get_current_user
from puretools.models.user import User
from puretools.services.rate_limiter import RateLimitResult, get_rate_limiter

logger = logging.getLogger(__name__)


def require_rate_limit(
    route_key: str,
    *,
    limit: int | None = None,
    window_seconds: int | None = None,
) -> Callable:
    """Limit by caller IP (or request.state.user when something upstream set it)."""

    async def dependency(request: Request) -> None:
        _enforce(request, identifier=_resolve_identifier(request), route_key=route_key, limit=limit, window_seconds=window_seconds)

    return dependency


def require_user_rate_limit(
    route_key: str,
    *,
    limit: int | None = None,
    window_seconds: int | None = None,
) -> Callable:
    """Limit by authenticated user id; resolves the user itself."""

    def dependency(request: Request, user: User = Depends(get_current_user)) -> None:
        _enforce(request, identifier=f"user:{user.id}", route_key=route_key, limit=limit, window_seconds=window_seconds, user_id=user.id)

    return dependency


def _enforce(
    request: Request,
    *,
    identifier: str,
    route_key: str,
    limit: int | None,
    window_seconds: int | None,
    user_id: int | None = None,
) -> None:
    # Settings are read per request so test overrides and reloads apply.
    resolved_limit = max(1, limit or settings.RATE_LIMIT_DEFAULT_MAX_REQUESTS)
    resolved_window = max(1, window_seconds or settings.RATE_LIMIT_DEFAULT_WINDOW_SECONDS)
    result = get_rate_limiter().check(
        identifier=identifier,
        route_key=route_key,
        limit=resolved_limit,
        window_seconds=resolved_window,
    )
    _log_decision(request=request, result=result, route_key=route_key, user_id=user_id)
    if not result.allowed:
        retry_after = max(1, result.retry_after_seconds)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "message": "Too many requests",
                "details": {
                    "retry_after_seconds": retry_after,
                    "limit": result.limit,
                    "remaining": result.remaining,
                },
            },
            headers={"Retry-After": str(retry_after)},
        )


def _resolve_identifier(request: Request) -> str:
    user = getattr(request.state, "user", None)
    if user is not None and getattr(user, "id", None):
        return f"user:{user.id}"

    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return f"ip:{first}"
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return f"ip:{real_ip.strip()}"

    client = request.client
    host = (client.host if client else None) or "unknown"
    return f"ip:{host}"


def _log_decision(*, request: Request, result: RateLimitResult, route_key: str, user_id: int | None = None) -> None:
    if user_id is None:
        user_id = getattr(getattr(request.state, "user", None), "id", None)
    payload = {
        "user_id": user_id,
        "route": request.url.path,
        "http_method": request.method,
        "route_key": route_key,
        "limiter_key": result.limiter_key,
        "window_seconds": result.window_seconds,
        "limit": result.limit,
        "current_count": result.count,
        "remaining": result.remaining,
        "reset_epoch": result.window_reset_epoch,
        "decision": "allow" if result.allowed else "block",
    }
    logger.info(json.dumps(payload, separators=(",", ":")))
