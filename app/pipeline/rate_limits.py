"""Fixed-window rate limits for generator calls.

Bucket key is ``identity:operation:floor(now / window_ms)``. A bucket admits
``max_requests`` calls; further calls are rejected without incrementing.
Bursts straddling a window boundary can admit up to 2x max_requests; that is
the accepted cost of fixed windows.

The window table lives in process memory behind a lock. It is only correct for
a single-instance deployment and every restart resets all counters; the limiter
is advisory, not a security boundary.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from app.pipeline.errors import RateLimitExceeded

if TYPE_CHECKING:
    from app.config import Settings

logger = logging.getLogger(__name__)

GLOBAL_IDENTITY = "__global__"

MIN_WINDOW_MS = 1_000
MAX_WINDOW_MS = 3_600_000
MIN_MAX_REQUESTS = 1
MAX_MAX_REQUESTS = 1_000


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


def _ms_to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check."""

    allowed: bool
    reset_time_ms: int
    count: int
    limit: int

    @property
    def reset_time(self) -> datetime:
        return _ms_to_datetime(self.reset_time_ms)


@dataclass
class _Window:
    count: int
    reset_time_ms: int


class FixedWindowRateLimiter:
    """Thread-safe in-memory fixed-window counter keyed by identity and operation."""

    def __init__(self, clock: Callable[[], int] | None = None) -> None:
        self._clock = clock or _wall_clock_ms
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def allow(
        self,
        identity: str,
        operation: str,
        window_ms: int,
        max_requests: int,
    ) -> RateLimitDecision:
        """Count one call against the current window; reject once the window is full.

        Raises:
            ValueError: window_ms outside [1000, 3600000] or max_requests outside [1, 1000].
        """
        if not MIN_WINDOW_MS <= window_ms <= MAX_WINDOW_MS:
            raise ValueError(f"window_ms must be between {MIN_WINDOW_MS} and {MAX_WINDOW_MS}")
        if not MIN_MAX_REQUESTS <= max_requests <= MAX_MAX_REQUESTS:
            raise ValueError(
                f"max_requests must be between {MIN_MAX_REQUESTS} and {MAX_MAX_REQUESTS}"
            )

        now = self._clock()
        key = f"{identity}:{operation}:{now // window_ms}"
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                window = _Window(count=0, reset_time_ms=now + window_ms)
                self._windows[key] = window
            if window.count >= max_requests:
                decision = RateLimitDecision(
                    allowed=False,
                    reset_time_ms=window.reset_time_ms,
                    count=window.count,
                    limit=max_requests,
                )
            else:
                window.count += 1
                decision = RateLimitDecision(
                    allowed=True,
                    reset_time_ms=window.reset_time_ms,
                    count=window.count,
                    limit=max_requests,
                )
            self._purge_locked(now)
        return decision

    def purge_expired(self) -> int:
        """Drop windows whose reset time has passed. Returns the number removed."""
        with self._lock:
            return self._purge_locked(self._clock())

    def reset(self, identity: str | None = None) -> None:
        """Clear all windows, or only those belonging to *identity*."""
        with self._lock:
            if identity is None:
                self._windows.clear()
                return
            prefix = f"{identity}:"
            for key in [k for k in self._windows if k.startswith(prefix)]:
                del self._windows[key]

    def _purge_locked(self, now: int) -> int:
        expired = [k for k, w in self._windows.items() if w.reset_time_ms < now]
        for key in expired:
            del self._windows[key]
        return len(expired)


def check_rate_limit(
    limiter: FixedWindowRateLimiter,
    identity: str,
    operation: str,
    settings: Settings | None = None,
) -> RateLimitDecision | None:
    """Admit one call through the global tier, then the per-identity tier.

    The identity tier is only evaluated once the global tier passes. A tier
    whose max requests is 0 or negative is disabled. Returns the identity-tier
    decision (None when that tier is disabled).

    Raises:
        RateLimitExceeded: scope "global" or "identity", carrying the window reset time.
    """
    if settings is None:
        from app.config import get_settings

        settings = get_settings()

    if settings.global_rate_limit_max_requests > 0:
        decision = limiter.allow(
            GLOBAL_IDENTITY,
            operation,
            settings.global_rate_limit_window_ms,
            settings.global_rate_limit_max_requests,
        )
        if not decision.allowed:
            logger.warning(
                "Global rate limit exceeded: operation=%s limit=%d reset_time=%s",
                operation,
                decision.limit,
                decision.reset_time.isoformat(),
            )
            raise RateLimitExceeded(identity, operation, decision.reset_time, scope="global")

    if settings.identity_rate_limit_max_requests <= 0:
        return None

    decision = limiter.allow(
        identity,
        operation,
        settings.identity_rate_limit_window_ms,
        settings.identity_rate_limit_max_requests,
    )
    if not decision.allowed:
        logger.warning(
            "Rate limit exceeded: identity=%s operation=%s count=%d limit=%d",
            identity,
            operation,
            decision.count,
            decision.limit,
        )
        raise RateLimitExceeded(identity, operation, decision.reset_time, scope="identity")
    return decision
