"""Sliding window limiter for failed login attempts."""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from collections.abc import Callable

from .exceptions import RateLimitError

_LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_WINDOW_SECONDS = 15 * 60


class AttemptLimiter:
    """Count failed attempts per key and refuse further ones over the limit."""

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        window: float = DEFAULT_WINDOW_SECONDS,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._max_attempts = max_attempts
        self._window = window
        self._clock = clock or time.monotonic
        self._failures: dict[str, deque[float]] = {}

    def _prune(self, key: str, now: float) -> deque[float]:
        failures = self._failures.setdefault(key, deque())
        while failures and now - failures[0] >= self._window:
            failures.popleft()
        if not failures:
            del self._failures[key]
        return failures

    def check(self, key: str) -> None:
        """Raise RateLimitError if key has used up its attempts."""
        now = self._clock()
        failures = self._prune(key, now)
        if len(failures) >= self._max_attempts:
            retry_after = max(1, math.ceil(failures[0] + self._window - now))
            _LOGGER.warning(
                "Too many failed attempts for %s, retry in %ss", key, retry_after
            )
            raise RateLimitError(retry_after)

    def record_failure(self, key: str) -> None:
        """Record a failed attempt for key."""
        now = self._clock()
        self._prune(key, now)
        self._failures.setdefault(key, deque()).append(now)

    def reset(self, key: str) -> None:
        """Forget the failed attempts for key."""
        self._failures.pop(key, None)

    def failures(self, key: str) -> int:
        """Return the number of failures for key in the current window."""
        return len(self._prune(key, self._clock()))
