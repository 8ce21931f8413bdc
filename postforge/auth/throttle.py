"""In-memory fixed-window rate limiting."""

import asyncio
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from threading import Lock
from typing import Callable, Dict, Mapping, Optional, Sequence

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_CLIENT_IP_HEADERS = ("cf-connecting-ip", "x-real-ip", "x-forwarded-for")
UNKNOWN_CLIENT = "unknown"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Allow ``max_requests`` per ``window_seconds``."""

    window_seconds: float
    max_requests: int


@dataclass(frozen=True)
class RateLimitResult:
    """Decision for one request."""

    allowed: bool
    remaining: int
    reset_at: float
    checked_at: float

    @property
    def retry_after(self) -> int:
        """Whole seconds until the window resets (never negative)."""
        return max(0, math.ceil(self.reset_at - self.checked_at))

    @property
    def reset_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc)


@dataclass
class WindowEntry:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """
    Counts requests per key in fixed windows.

    The first request for a key opens a window of ``policy.window_seconds``.
    Requests inside the window increment its counter; once the counter
    exceeds ``policy.max_requests`` further requests are denied until the
    window ends. A request arriving after ``reset_at`` opens a new window.

    Windows are not aligned to a sliding interval, so a client can get up
    to ``2 * max_requests`` through around a window boundary.

    Example:
        >>> limiter = FixedWindowRateLimiter()
        >>> result = limiter.check("login:203.0.113.7", RateLimitPolicy(900, 5))
        >>> result.allowed, result.remaining
        (True, 4)
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, WindowEntry] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def check(self, key: str, policy: RateLimitPolicy) -> RateLimitResult:
        """
        Count one request against ``key`` and decide whether it is allowed.

        Args:
            key: ``"<action>:<client identifier>"``
            policy: Window length and request budget

        Returns:
            RateLimitResult for this request
        """
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)

            if entry is None or now > entry.reset_at:
                entry = WindowEntry(count=1, reset_at=now + policy.window_seconds)
                self._entries[key] = entry
                return RateLimitResult(
                    allowed=True,
                    remaining=policy.max_requests - 1,
                    reset_at=entry.reset_at,
                    checked_at=now,
                )

            entry.count += 1
            if entry.count > policy.max_requests:
                logger.warning(
                    "rate_limit_exceeded",
                    key=key,
                    count=entry.count,
                    max_requests=policy.max_requests,
                )
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=entry.reset_at,
                    checked_at=now,
                )

            return RateLimitResult(
                allowed=True,
                remaining=policy.max_requests - entry.count,
                reset_at=entry.reset_at,
                checked_at=now,
            )

    def reset(self, key: str) -> None:
        """Forget the window for ``key``."""
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep_expired(self) -> int:
        """
        Drop windows that have ended.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if now > entry.reset_at]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.debug("rate_limit_windows_swept", count=len(expired))
        return len(expired)


async def run_periodic_sweep(limiter: FixedWindowRateLimiter, interval_seconds: float) -> None:
    """Sweep expired windows every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        limiter.sweep_expired()


def get_client_identifier(
    headers: Mapping[str, str],
    header_names: Sequence[str] = DEFAULT_CLIENT_IP_HEADERS,
) -> str:
    """
    Identify the client from proxy headers.

    The first non-empty header wins. For comma-separated chains such as
    ``X-Forwarded-For`` the first entry (the originating client) is used.

    Args:
        headers: Request headers (case-insensitive mapping, or lower-case keys)
        header_names: Header names to consult, in order

    Returns:
        Client identifier, or ``"unknown"``
    """
    for name in header_names:
        value: Optional[str] = headers.get(name)
        if not value:
            continue
        first = value.split(",")[0].strip()
        if first:
            return first
    return UNKNOWN_CLIENT


@lru_cache
def get_rate_limiter() -> FixedWindowRateLimiter:
    """
    Get the process-wide rate limiter (cached).

    Returns:
        FixedWindowRateLimiter using the wall clock
    """
    return FixedWindowRateLimiter()
