from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Protocol

import boto3

from puretools.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_after_seconds: int
    limit: int
    remaining: int
    count: int
    window_reset_epoch: int
    limiter_key: str
    window_seconds: int


class RateLimiter(Protocol):
    def check(
        self,
        *,
        identifier: str,
        route_key: str,
        limit: int,
        window_seconds: int,
        now: int | None = None,
    ) -> RateLimitResult:
        ...


def build_limiter_key(route_key: str, window_seconds: int) -> str:
    return f"route:{route_key}:window:{window_seconds}"


class NoopRateLimiter:
    """Always allows. Used when rate limiting is off or its backend is not configured."""

    def check(
        self,
        *,
        identifier: str,
        route_key: str,
        limit: int,
        window_seconds: int,
        now: int | None = None,
    ) -> RateLimitResult:
        now_ts = int(now or time.time())
        return RateLimitResult(
            allowed=True,
            retry_after_seconds=0,
            limit=limit,
            remaining=max(0, limit),
            count=0,
            window_reset_epoch=now_ts + window_seconds,
            limiter_key=f"noop:{route_key}:window:{window_seconds}",
            window_seconds=window_seconds,
        )


_limiter: RateLimiter | None = None
_lock = threading.Lock()


def get_rate_limiter() -> RateLimiter:
    global _limiter
    if _limiter is not None:
        return _limiter
    with _lock:
        if _limiter is None:
            _limiter = _build_rate_limiter()
    return _limiter


def set_rate_limiter(limiter: RateLimiter | None) -> None:
    """Install a specific limiter instance (tests, embedding apps)."""
    global _limiter
    with _lock:
        _limiter = limiter


def reset_rate_limiter() -> None:
    """
    Test helper to ensure a fresh limiter instance is constructed after settings change.
    """
    set_rate_limiter(None)


def _build_rate_limiter() -> RateLimiter:
    if not settings.RATE_LIMIT_ENABLED:
        logger.info("Rate limiting disabled via RATE_LIMIT_ENABLED=false; using NoopRateLimiter")
        return NoopRateLimiter()

    backend = settings.RATE_LIMIT_BACKEND
    if backend == "memory":
        from puretools.services.rate_limiter_memory import InMemoryRateLimiter

        logger.info("Rate limiting enabled using the in-process limiter (single instance only)")
        return InMemoryRateLimiter(sweep_interval_seconds=settings.RATE_LIMIT_SWEEP_SECONDS)

    if backend != "dynamodb":
        logger.warning("Unknown RATE_LIMIT_BACKEND=%s; disabling limiter", backend)
        return NoopRateLimiter()

    table_name = settings.DDB_RATE_LIMIT_TABLE
    region = settings.AWS_REGION
    if not table_name:
        logger.warning("RATE_LIMIT_BACKEND=dynamodb but DDB_RATE_LIMIT_TABLE is unset; disabling limiter")
        return NoopRateLimiter()
    if not region:
        logger.warning("RATE_LIMIT_BACKEND=dynamodb but AWS_REGION is unset; disabling limiter")
        return NoopRateLimiter()

    from puretools.services.rate_limiter_dynamo import DynamoRateLimiter

    client = boto3.client("dynamodb", region_name=region)
    logger.info("Rate limiting enabled using DynamoDB table %s in %s", table_name, region)
    return DynamoRateLimiter(client, table_name=table_name)
