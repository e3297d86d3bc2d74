"""Sliding-window limiter for join attempts.

This is a best-effort abuse heuristic keyed by whatever identity the caller
can observe (usually the client address). It is not an authentication
boundary and resets when the process restarts.
"""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Deque, Dict

from .errors import RateLimitedError


@dataclass(frozen=True, slots=True)
class RateDecision:
    allowed: bool
    retry_after: float = 0.0


class SlidingWindowRateLimiter:
    """Allow at most ``max_attempts`` per key within ``window_seconds``."""

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_attempts = max_attempts
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._attempts: Dict[str, Deque[float]] = {}
        self._lock = Lock()
        self._last_sweep = clock()

    def check(self, key: str) -> RateDecision:
        """Record an attempt for ``key`` if it is within the limit."""

        now = self._clock()
        with self._lock:
            self._sweep(now)
            attempts = self._attempts.get(key)
            if attempts is None:
                attempts = self._attempts[key] = deque()
            self._prune(attempts, now)
            if len(attempts) >= self.max_attempts:
                remaining = self.window_seconds - (now - attempts[0])
                return RateDecision(allowed=False, retry_after=float(math.ceil(remaining)))
            attempts.append(now)
            return RateDecision(allowed=True)

    @property
    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._attempts)

    def hit(self, key: str) -> None:
        decision = self.check(key)
        if not decision.allowed:
            raise RateLimitedError(decision.retry_after)

    def reset(self, key: str) -> None:
        with self._lock:
            self._attempts.pop(key, None)

    def _prune(self, attempts: Deque[float], now: float) -> None:
        while attempts and now - attempts[0] >= self.window_seconds:
            attempts.popleft()

    def _sweep(self, now: float) -> None:
        # At most once per window, drop keys whose attempts have all expired.
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        for key in list(self._attempts):
            attempts = self._attempts[key]
            self._prune(attempts, now)
            if not attempts:
                del self._attempts[key]
