from __future__ import annotations

"""Periodic physical cleanup.

Read paths already hide expired messages; the sweeper only reclaims space.
Each pass deletes expired ephemeral messages, trims mood history beyond the
retention window and prunes elapsed rate-limit windows.  ``sweep()`` is
idempotent and can be called directly as well as from the timer loop.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from pydantic import BaseModel

from whisperwalls.db.message_store import MessageStore
from whisperwalls.db.mood_history_store import MoodHistoryStore
from whisperwalls.metrics import EXPIRED_MESSAGES_SWEPT_TOTAL
from whisperwalls.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class SweepResult(BaseModel):
    messages_removed: int = 0
    mood_entries_trimmed: int = 0
    rate_limit_windows_pruned: int = 0


class ExpirationSweeper:
    def __init__(
        self,
        messages: MessageStore,
        mood_history: MoodHistoryStore,
        rate_limiter: Optional[RateLimiter] = None,
        *,
        interval_seconds: float = 3600.0,
        history_retention_days: int = 365,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.messages = messages
        self.mood_history = mood_history
        self.rate_limiter = rate_limiter
        self.interval_seconds = interval_seconds
        self.history_retention = timedelta(days=history_retention_days)
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or self._clock()
        # Overlapping passes would only race each other on the same deletes.
        async with self._lock:
            result = SweepResult()

            try:
                result.messages_removed = await self.messages.delete_expired(now)
            except Exception as exc:  # noqa: BLE001 – one failed step must not stop the others
                logger.error("Expired message sweep failed: %s", exc, exc_info=True)

            try:
                result.mood_entries_trimmed = await self.mood_history.trim_before(
                    now - self.history_retention
                )
            except Exception as exc:  # noqa: BLE001
                logger.error("Mood history trim failed: %s", exc, exc_info=True)

            if self.rate_limiter is not None:
                result.rate_limit_windows_pruned = self.rate_limiter.prune()

        if result.messages_removed:
            EXPIRED_MESSAGES_SWEPT_TOTAL.inc(result.messages_removed)
        logger.info(
            "Sweep finished: %d messages removed, %d mood entries trimmed, %d rate-limit windows pruned",
            result.messages_removed,
            result.mood_entries_trimmed,
            result.rate_limit_windows_pruned,
        )
        return result

    async def _run(self) -> None:
        while True:
            await self.sweep()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Expiration sweeper started (every %.0fs)", self.interval_seconds)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Expiration sweeper stopped")
