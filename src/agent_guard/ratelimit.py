"""Fixed-window rate limiter per agent.

Windows are aligned to ``floor(now / window)``, so a burst straddling a window
boundary can admit up to ``2 * limit`` calls in a short span. That is the
accepted trade-off of fixed windows; this is not a token bucket.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from agent_guard.audit import AuditSink
from agent_guard.models import AuditEntry, AuditStatus

logger = logging.getLogger(__name__)

RATE_LIMIT_METHOD = "RATE_LIMIT"
RATE_LIMIT_PATH = "/orchestrator/dispatch"


@dataclass
class RateLimitWindow:
    count: int
    reset_at: float  # epoch milliseconds


class WindowStore(ABC):
    """Owns the (agent, window index) -> counter table."""

    @abstractmethod
    async def increment(self, key: tuple[str, int], now_ms: float, window_ms: float) -> int:
        """Increment the counter for *key* and return the new count.

        Creates the window if missing and resets it if *now_ms* is past its reset time.
        """
        ...

    @abstractmethod
    async def purge_expired(self, now_ms: float) -> int:
        """Remove windows whose reset time has passed. Returns the number removed."""
        ...


class MemoryWindowStore(WindowStore):
    """In-process window table guarded by an asyncio.Lock."""

    def __init__(self) -> None:
        self._windows: dict[tuple[str, int], RateLimitWindow] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._windows)

    def get(self, key: tuple[str, int]) -> RateLimitWindow | None:
        return self._windows.get(key)

    async def increment(self, key: tuple[str, int], now_ms: float, window_ms: float) -> int:
        async with self._lock:
            window = self._windows.get(key)
            if window is None:
                window = RateLimitWindow(count=0, reset_at=now_ms + window_ms)
                self._windows[key] = window
            if now_ms > window.reset_at:
                window.count = 0
                window.reset_at = now_ms + window_ms
            window.count += 1
            return window.count

    async def purge_expired(self, now_ms: float) -> int:
        async with self._lock:
            expired = [k for k, w in self._windows.items() if w.reset_at < now_ms]
            for key in expired:
                del self._windows[key]
            return len(expired)


class RateLimiter:
    """Per-agent fixed-window limiter. Every call is audit-logged, allowed or not."""

    def __init__(
        self,
        audit: AuditSink,
        store: WindowStore | None = None,
        *,
        clock: Callable[[], float] = time.time,
        cleanup_interval: float = 300,
    ) -> None:
        self._audit = audit
        self._store = store if store is not None else MemoryWindowStore()
        self._clock = clock
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = clock()

    @property
    def store(self) -> WindowStore:
        return self._store

    async def try_acquire(self, agent_id: str, limit: int = 10, window_seconds: int = 60) -> bool:
        """Count one call for *agent_id*; False once the window holds more than *limit*.

        The rejected call still increments the counter.
        """
        now = self._clock()
        if now - self._last_cleanup >= self._cleanup_interval:
            await self.cleanup()

        now_ms = now * 1000
        window_ms = window_seconds * 1000
        key = (agent_id, math.floor(now_ms / window_ms))
        count = await self._store.increment(key, now_ms, window_ms)

        metadata = {"count": count, "limit": limit, "window_seconds": window_seconds}
        if count > limit:
            reason = f"Rate limit exceeded: {count}/{limit} in {window_seconds}s"
            logger.warning("Agent %s throttled (%s)", agent_id, reason)
            await self._audit.append(
                AuditEntry(
                    agent=agent_id,
                    endpoint_id="orchestrator.rate_limit",
                    method=RATE_LIMIT_METHOD,
                    path=RATE_LIMIT_PATH,
                    status=AuditStatus.DENIED,
                    reason=reason,
                    metadata=metadata,
                )
            )
            return False

        await self._audit.append(
            AuditEntry(
                agent=agent_id,
                endpoint_id="orchestrator.rate_limit",
                method=RATE_LIMIT_METHOD,
                path=RATE_LIMIT_PATH,
                status=AuditStatus.ALLOWED,
                metadata=metadata,
            )
        )
        return True

    async def cleanup(self) -> int:
        """Reclaim windows that have already reset. Does not affect counting."""
        now = self._clock()
        self._last_cleanup = now
        removed = await self._store.purge_expired(now * 1000)
        if removed:
            logger.debug("Reclaimed %d expired rate-limit windows", removed)
        return removed
