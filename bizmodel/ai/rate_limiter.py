"""
rate_limiter.py — Sliding-window limiter for the AI proxy endpoints.

Identifiers:
  user:{id}           → 50 requests / 60 s
  anon:{session key}  → 10 requests / 60 s

Per-identifier lists of request timestamps, pruned on every check and swept
every 5 minutes by a lifespan task so idle identifiers do not accumulate.
Single-process only: each worker has its own counts.
"""
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

WINDOW_SECONDS: float = 60.0
AUTHENTICATED_LIMIT = 50
ANONYMOUS_LIMIT = 10
RATE_LIMIT_SWEEP_SECONDS: float = 5 * 60


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: float


def rate_limit_identifier(user_id: Optional[int], session_key: str) -> str:
    return f"user:{user_id}" if user_id is not None else f"anon:{session_key}"


class RateLimiter:
    def __init__(
        self,
        window_seconds: float = WINDOW_SECONDS,
        authenticated_limit: int = AUTHENTICATED_LIMIT,
        anonymous_limit: int = ANONYMOUS_LIMIT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = window_seconds
        self._authenticated_limit = authenticated_limit
        self._anonymous_limit = anonymous_limit
        self._clock = clock
        self._requests: dict[str, deque[float]] = {}

    def __len__(self) -> int:
        return len(self._requests)

    def _limit_for(self, identifier: str) -> int:
        return self._authenticated_limit if identifier.startswith("user:") else self._anonymous_limit

    def _prune(self, identifier: str, now: float) -> deque[float]:
        timestamps = self._requests.setdefault(identifier, deque())
        while timestamps and now - timestamps[0] >= self._window:
            timestamps.popleft()
        return timestamps

    def check(self, identifier: str) -> RateLimitDecision:
        """Record the request if allowed. Denied requests are not counted."""
        now = self._clock()
        timestamps = self._prune(identifier, now)
        limit = self._limit_for(identifier)
        if len(timestamps) >= limit:
            retry_after = self._window - (now - timestamps[0])
            logger.info("Rate limit hit identifier=%s…", identifier[:24])
            return RateLimitDecision(allowed=False, remaining=0, retry_after=max(retry_after, 0.0))
        timestamps.append(now)
        return RateLimitDecision(allowed=True, remaining=limit - len(timestamps), retry_after=0.0)

    def remaining(self, identifier: str) -> int:
        timestamps = self._prune(identifier, self._clock())
        return max(self._limit_for(identifier) - len(timestamps), 0)

    def sweep(self) -> int:
        """Drop identifiers with no request inside the window."""
        now = self._clock()
        stale = [
            key for key, ts in self._requests.items()
            if not ts or now - ts[-1] >= self._window
        ]
        for key in stale:
            del self._requests[key]
        if stale:
            logger.debug("Rate limiter sweep removed=%d remaining=%d", len(stale), len(self._requests))
        return len(stale)
