from __future__ import annotations

import threading
import time
from dataclasses import dataclass

from puretools.services.rate_limiter import RateLimitResult, build_limiter_key


@dataclass
class _Window:
    start: int
    count: int
    reset_at: int


class InMemoryRateLimiter:
    """
    Fixed-window counters held in this process.

    Each process counts only its own traffic, so this is correct for a single
    instance only; multi-instance deployments use the DynamoDB limiter.
    Expired windows are dropped by a sweep that runs at most once per
    `sweep_interval_seconds`, piggybacking on check() calls.
    """

    def __init__(self, *, sweep_interval_seconds: int = 60):
        self.sweep_interval_seconds = max(1, sweep_interval_seconds)
        self._windows: dict[tuple[str, str], _Window] = {}
        self._lock = threading.Lock()
        self._last_sweep = 0

    def __len__(self) -> int:
        return len(self._windows)

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
        limiter_key = build_limiter_key(route_key, window_seconds)

        with self._lock:
            self._maybe_sweep(now_ts)

            key = (identifier, limiter_key)
            window = self._windows.get(key)
            if window is None or now_ts >= window.reset_at:
                window = _Window(start=now_ts, count=0, reset_at=now_ts + window_seconds)
                self._windows[key] = window

            if window.count >= limit:
                # Rejected requests are not counted.
                return RateLimitResult(
                    allowed=False,
                    retry_after_seconds=max(1, window.reset_at - now_ts),
                    limit=limit,
                    remaining=0,
                    count=window.count,
                    window_reset_epoch=window.reset_at,
                    limiter_key=limiter_key,
                    window_seconds=window_seconds,
                )

            window.count += 1
            return RateLimitResult(
                allowed=True,
                retry_after_seconds=0,
                limit=limit,
                remaining=max(0, limit - window.count),
                count=window.count,
                window_reset_epoch=window.reset_at,
                limiter_key=limiter_key,
                window_seconds=window_seconds,
            )

    def sweep(self, now: int | None = None) -> int:
        now_ts = int(now or time.time())
        with self._lock:
            return self._sweep(now_ts)

    def _maybe_sweep(self, now_ts: int) -> None:
        if now_ts - self._last_sweep >= self.sweep_interval_seconds:
            self._sweep(now_ts)

    def _sweep(self, now_ts: int) -> int:
        expired = [key for key, window in self._windows.items() if now_ts >= window.reset_at]
        for key in expired:
            del self._windows[key]
        self._last_sweep = now_ts
        return len(expired)
