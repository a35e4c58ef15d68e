"""
session_cache.py — In-process fallback map: session key → (user_id, timestamp).

Used when the cookie session fails to round-trip (cross-site cookie
problems). The cookie session stays the source of truth; this cache only
lets the Identity Resolver recover and re-seed it.

One instance per process, created in main.py lifespan and stored on
app.state.session_cache. Tests build isolated instances with a fake clock.

Concurrency: handlers run on one event loop and never await while touching
the dict, so get/set/delete/sweep are atomic with respect to each other.
Lost on restart; nothing is written to disk.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

SESSION_CACHE_TTL_SECONDS: float = 24 * 3600
SESSION_CACHE_SWEEP_SECONDS: float = 15 * 60


@dataclass(frozen=True)
class SessionCacheEntry:
    user_id: int
    timestamp: float


class SessionCache:
    """
    TTL map keyed by the derived session key (IP + user-agent).

    get() evicts lazily; sweep() evicts eagerly and is driven by a
    background task every SESSION_CACHE_SWEEP_SECONDS.
    """

    def __init__(
        self,
        ttl_seconds: float = SESSION_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, SessionCacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_key: str) -> bool:
        return session_key in self._entries

    def _is_expired(self, entry: SessionCacheEntry, now: float) -> bool:
        return now - entry.timestamp >= self._ttl

    def get(self, session_key: str) -> Optional[int]:
        """Return the cached user id, or None when missing or expired (expired entries are dropped)."""
        entry = self._entries.get(session_key)
        if entry is None:
            return None
        if self._is_expired(entry, self._clock()):
            del self._entries[session_key]
            logger.debug("Session cache entry expired key=%s…", session_key[:16])
            return None
        return entry.user_id

    def set(self, session_key: str, user_id: int) -> None:
        """Create or refresh the entry with the current timestamp."""
        self._entries[session_key] = SessionCacheEntry(user_id=user_id, timestamp=self._clock())

    def delete(self, session_key: str) -> None:
        self._entries.pop(session_key, None)

    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("Session cache sweep removed=%d remaining=%d", len(expired), len(self._entries))
        return len(expired)
