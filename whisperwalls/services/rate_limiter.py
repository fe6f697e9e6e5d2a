from __future__ import annotations

"""Fixed-window request counters keyed by ``(subject, action)``.

Counting is delegated to the ``limits`` package: a
:class:`~limits.strategies.FixedWindowRateLimiter` over a pluggable
:class:`~limits.storage.Storage` (in-process memory by default, so a shared
``redis://`` storage can be dropped in without touching callers).  Windows
are wall-clock and expire on their own; the sweeper calls
:meth:`RateLimiter.prune` only to forget keys whose window has elapsed.
"""

import logging
import math
import time
from datetime import datetime, timezone
from typing import Optional, Set

from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter
from pydantic import BaseModel, ConfigDict

from whisperwalls.metrics import RATE_LIMIT_REJECTIONS_TOTAL

logger = logging.getLogger(__name__)

__all__ = [
    "ACTION_CREATE",
    "ACTION_REPORT",
    "RateLimitDecision",
    "RateLimiter",
]

ACTION_CREATE = "create"
ACTION_REPORT = "report"


class RateLimitDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    remaining: int
    reset_at: datetime
    retry_after_seconds: float = 0.0


def window_item(limit: int, window_ms: int) -> RateLimitItem:
    """``limit`` hits per window; ``limits`` counts whole seconds."""
    return RateLimitItemPerSecond(limit, max(1, math.ceil(window_ms / 1000)))


class RateLimiter:
    def __init__(self, storage: Optional[Storage] = None):
        self.storage = storage if storage is not None else MemoryStorage()
        self.strategy = FixedWindowRateLimiter(self.storage)
        self._keys: Set[str] = set()

    def hit(self, subject: str, action: str, limit: int, window_ms: int) -> RateLimitDecision:
        """Count one *action* by *subject* and report whether it is allowed."""

        item = window_item(limit, window_ms)
        allowed = self.strategy.hit(item, subject, action)
        self._keys.add(item.key_for(subject, action))

        stats = self.strategy.get_window_stats(item, subject, action)
        reset_at = datetime.fromtimestamp(stats.reset_time, tz=timezone.utc)

        if not allowed:
            RATE_LIMIT_REJECTIONS_TOTAL.labels(action=action).inc()
            logger.info("Rate limit hit for %s on %s", subject, action)
            return RateLimitDecision(
                allowed=False,
                remaining=0,
                reset_at=reset_at,
                retry_after_seconds=max(0.0, stats.reset_time - time.time()),
            )
        return RateLimitDecision(allowed=True, remaining=stats.remaining, reset_at=reset_at)

    def check(self, subject: str, action: str, limit: int, window_ms: int) -> bool:
        return self.hit(subject, action, limit, window_ms).allowed

    def prune(self) -> int:
        """Forget keys whose window has elapsed; returns how many were dropped."""

        # Storage.get() evicts an expired counter and reports zero for it.
        stale = [key for key in list(self._keys) if self.storage.get(key) == 0]
        self._keys.difference_update(stale)
        return len(stale)

    def __len__(self) -> int:
        return len(self._keys)
