"""
auth/ratelimit.py -- Fixed-window attempt counters for sensitive endpoints.

slowapi (api/limiter.py) throttles whole routes per IP. This module covers
the cases that need a caller-visible result instead of an exception from a
decorator: the admin-password check and the setup endpoint report
remaining attempts and the reset time, and the route decides what to send.

Pattern: injected component. RateLimiters() is built once in the app
lifespan and stored on app.state.rate_limiters; tests call reset() between
cases. There is no module-level counter state.

Scope: counters live in process memory. Several workers or hosts each count
separately -- advisory throttling, not a distributed limiter.

Layer rule: no imports from api/, posts/, cache/, or storage/.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one RateLimiter.check() call.

    reset_at is wall-clock epoch milliseconds, ready for a JSON body or a
    Retry-After computation.
    """

    allowed: bool
    remaining: int
    reset_at: int

    def retry_after_seconds(self, now_ms: int | None = None) -> int:
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        return max(1, -(-(self.reset_at - now_ms) // 1000))


class RateLimited(Exception):
    """Raised by enforce() when a key is over its limit. Mapped to HTTP 429."""

    def __init__(self, result: RateLimitResult, message: str = "Too many requests") -> None:
        super().__init__(message)
        self.result = result
        self.message = message


class RateLimiter:
    """Fixed-window counter keyed by an arbitrary string.

    Args:
        limit:     Attempts allowed per window.
        window_ms: Window length in milliseconds.
        clock:     Returns the current time in milliseconds. Injected so tests
                   can move time forward without sleeping.
    """

    def __init__(self, limit: int, window_ms: int, clock: Callable[[], float] | None = None) -> None:
        if limit < 1 or window_ms < 1:
            raise ValueError("limit and window_ms must be positive")
        self.limit = limit
        self.window_ms = window_ms
        self._clock = clock or (lambda: time.time() * 1000)
        self._lock = threading.Lock()
        # key -> (count, reset_at_ms)
        self._entries: dict[str, tuple[int, int]] = {}

    def check(self, key: str) -> RateLimitResult:
        """Count one attempt for key and report whether it is allowed."""
        now = int(self._clock())
        with self._lock:
            count, reset_at = self._entries.get(key, (0, 0))
            if now >= reset_at:
                reset_at = now + self.window_ms
                self._entries[key] = (1, reset_at)
                return RateLimitResult(allowed=True, remaining=self.limit - 1, reset_at=reset_at)
            if count >= self.limit:
                return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at)
            count += 1
            self._entries[key] = (count, reset_at)
            return RateLimitResult(allowed=True, remaining=self.limit - count, reset_at=reset_at)

    def reset(self, key: str | None = None) -> None:
        """Forget one key, or every key when called without arguments."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def purge_expired(self) -> int:
        now = int(self._clock())
        with self._lock:
            stale = [k for k, (_count, reset_at) in self._entries.items() if now >= reset_at]
            for k in stale:
                del self._entries[k]
        return len(stale)


_MINUTE_MS = 60 * 1000
_HOUR_MS = 60 * _MINUTE_MS


class RateLimiters:
    """The per-process set of limiters the routes use.

    admin_verify: 5 attempts / 15 minutes per client for the admin password.
    setup:        3 attempts / hour per client for the bootstrap endpoint.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self.admin_verify = RateLimiter(5, 15 * _MINUTE_MS, clock)
        self.setup = RateLimiter(3, _HOUR_MS, clock)

    def _all(self) -> tuple[RateLimiter, ...]:
        return (self.admin_verify, self.setup)

    def reset(self) -> None:
        for limiter in self._all():
            limiter.reset()

    def purge_expired(self) -> int:
        return sum(limiter.purge_expired() for limiter in self._all())


def get_client_identifier(request: Request) -> str:
    """Best-effort client address: X-Forwarded-For, X-Real-IP, socket peer."""
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def enforce(
    request: Request,
    limiter: RateLimiter,
    prefix: str = "api",
    message: str = "Too many requests",
) -> RateLimitResult:
    """Count an attempt for this client under prefix; raise RateLimited if over.

    Returns the result on success so callers can echo remaining attempts.
    """
    result = limiter.check(f"{prefix}:{get_client_identifier(request)}")
    if not result.allowed:
        raise RateLimited(result, message)
    return result
