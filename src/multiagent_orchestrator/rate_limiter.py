"""
Per-user request rate limiting for the multi-agent orchestrator.

In-memory sliding window: each user may submit ``requests_per_minute``
requests in any 60-second window. Rejected requests are not counted.
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import Any

from multiagent_orchestrator.config import RateLimitConfig
from multiagent_orchestrator.error_codes import MAO_5002_RATE_LIMITED
from multiagent_orchestrator.logging_config import get_structured_logger
from multiagent_orchestrator.models.requests import ErrorKind

logger: logging.LoggerAdapter[Any] = get_structured_logger(__name__)

WINDOW_SECONDS = 60.0


class RateLimitExceededError(Exception):
    """Raised when a user exceeds the configured request rate.

    Attributes:
        user_id: The limited user.
        retry_after: Seconds until the oldest request leaves the window.
    """

    kind = ErrorKind.RATE_LIMITED
    retryable = True

    def __init__(self, user_id: str, limit: int, retry_after: float) -> None:
        self.error_code = MAO_5002_RATE_LIMITED
        self.user_id = user_id
        self.retry_after = retry_after
        self.message = (
            f"User '{user_id}' exceeded {limit} requests per minute; "
            f"retry after {retry_after:.1f}s"
        )
        super().__init__(f"[{self.error_code}] {self.message}")


class RateLimiter:
    """Sliding-window request limiter keyed by user ID.

    Args:
        config: Rate limit settings. When ``enabled`` is False every
            request is admitted and nothing is recorded.
        window_seconds: Window length.
        clock: Monotonic time source, replaceable in tests.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        window_seconds: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._window = window_seconds
        self._clock = clock
        self._requests: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def _evict(self, timestamps: deque[float], now: float) -> None:
        while timestamps and now - timestamps[0] >= self._window:
            timestamps.popleft()

    def _sweep(self, now: float) -> None:
        # Caller holds the lock. Runs at most once per window.
        if now - self._last_sweep < self._window:
            return
        self._last_sweep = now
        for user_id in list(self._requests):
            timestamps = self._requests[user_id]
            self._evict(timestamps, now)
            if not timestamps:
                del self._requests[user_id]

    def check(self, user_id: str) -> None:
        """Admit one request for ``user_id`` or raise.

        Raises:
            RateLimitExceededError: If the user's window is full.
        """
        if not self._config.enabled:
            return

        limit = self._config.requests_per_minute
        now = self._clock()
        with self._lock:
            self._sweep(now)
            timestamps = self._requests.setdefault(user_id, deque())
            self._evict(timestamps, now)
            if len(timestamps) >= limit:
                retry_after = self._window - (now - timestamps[0])
                logger.warning(
                    "Rate limit exceeded",
                    extra={
                        "extra_data": {
                            "user_id": user_id,
                            "limit": limit,
                            "retry_after_seconds": round(retry_after, 2),
                        }
                    },
                )
                raise RateLimitExceededError(user_id, limit, retry_after)
            timestamps.append(now)

    @property
    def tracked_users(self) -> int:
        """Number of users with requests inside the window."""
        with self._lock:
            return len(self._requests)

    def get_usage(self, user_id: str) -> dict[str, Any]:
        """Current window usage for ``user_id``."""
        limit = self._config.requests_per_minute
        now = self._clock()
        with self._lock:
            timestamps = self._requests.get(user_id, deque())
            self._evict(timestamps, now)
            if not timestamps:
                self._requests.pop(user_id, None)
            used = len(timestamps)
            reset_in = self._window - (now - timestamps[0]) if timestamps else 0.0
        return {
            "user_id": user_id,
            "enabled": self._config.enabled,
            "used": used,
            "limit": limit,
            "remaining": max(limit - used, 0),
            "reset_in_seconds": round(reset_in, 2),
        }

    def reset(self, user_id: str | None = None) -> None:
        """Forget recorded requests for one user, or for everyone."""
        with self._lock:
            if user_id is None:
                self._requests.clear()
            else:
                self._requests.pop(user_id, None)
