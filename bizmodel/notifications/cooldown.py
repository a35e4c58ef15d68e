"""
cooldown.py — Per-recipient email cooldown.

The first INITIAL_EMAIL_LIMIT sends to an address are spaced at least
INITIAL_COOLDOWN_SECONDS apart; after that the gap grows to
EXTENDED_COOLDOWN_SECONDS. An address idle for ENTRY_IDLE_SECONDS is
forgotten by sweep().

check() reserves the slot when it allows a send, so two concurrent
requests for the same address cannot both go out. One instance per
process on app.state.email_cooldown; lost on restart.
"""
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

INITIAL_EMAIL_LIMIT = 5
INITIAL_COOLDOWN_SECONDS: float = 60
EXTENDED_COOLDOWN_SECONDS: float = 5 * 60
ENTRY_IDLE_SECONDS: float = 3600
EMAIL_COOLDOWN_SWEEP_SECONDS: float = 15 * 60


@dataclass
class _Entry:
    last_sent: float
    count: int


@dataclass(frozen=True)
class CooldownDecision:
    allowed: bool
    remaining_seconds: int = 0
    kind: Optional[str] = None   # "cooldown" | "extended" when denied


class EmailCooldown:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def check(self, email: str) -> CooldownDecision:
        key = email.strip().lower()
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None:
            self._entries[key] = _Entry(last_sent=now, count=1)
            return CooldownDecision(allowed=True)

        initial = entry.count <= INITIAL_EMAIL_LIMIT
        gap = INITIAL_COOLDOWN_SECONDS if initial else EXTENDED_COOLDOWN_SECONDS
        elapsed = now - entry.last_sent
        if elapsed < gap:
            kind = "cooldown" if initial else "extended"
            logger.info("Email cooldown hit kind=%s sends=%d", kind, entry.count)
            return CooldownDecision(allowed=False, remaining_seconds=math.ceil(gap - elapsed), kind=kind)

        entry.last_sent = now
        entry.count += 1
        return CooldownDecision(allowed=True)

    def sweep(self) -> int:
        now = self._clock()
        idle = [k for k, e in self._entries.items() if now - e.last_sent >= ENTRY_IDLE_SECONDS]
        for key in idle:
            del self._entries[key]
        if idle:
            logger.info("Email cooldown sweep removed=%d remaining=%d", len(idle), len(self._entries))
        return len(idle)
