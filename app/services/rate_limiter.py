# =============================================================================
# Rate Limiter — In-Process Per-Client Sliding Window
# =============================================================================
#
# Each client key (the caller's address) owns a deque of admission
# timestamps. A request at time `now` is admitted iff, after dropping
# timestamps at or before `now - window`, fewer than `limit` remain; the
# admitted request's timestamp is then appended. Rejected requests leave
# no trace, so a throttled client recovers as soon as its oldest admitted
# request ages out.
#
# DESIGN DECISION: Sliding window over fixed window. Fixed windows
# allow burst traffic at window boundaries (e.g., 100 requests at
# 0:59 + 100 at 1:00 = 200 in 2 seconds). Sliding windows distribute
# the limit evenly.
#
# DESIGN DECISION: One threading.Lock for admission AND sweep. Sync route
# dependencies run in FastAPI's thread pool, so the map is touched from
# several threads; one lock keeps "count then append" atomic per request.
#
# A background sweep (every `window` seconds) evicts clients whose every
# timestamp has expired, so memory tracks active clients only.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import Callable

from app.config import settings

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Admits at most `limit` requests per client in any `window_seconds`."""

    def __init__(
        self,
        limit: int | None = None,
        window_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = settings.rate_limit_requests if limit is None else limit
        self.window_seconds = (
            settings.rate_limit_window_seconds
            if window_seconds is None
            else window_seconds
        )
        if self.limit < 1:
            raise ValueError("limit must be at least 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self._clock = clock
        self._requests: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._sweep_task: asyncio.Task | None = None

    # -----------------------------------------------------------------------
    # Admission
    # -----------------------------------------------------------------------

    def allow(self, client_key: str) -> bool:
        """Record and admit the request, or reject it without recording."""
        with self._lock:
            now = self._clock()
            cutoff = now - self.window_seconds
            timestamps = self._requests.get(client_key)
            if timestamps is None:
                timestamps = deque()
                self._requests[client_key] = timestamps

            while timestamps and timestamps[0] <= cutoff:
                timestamps.popleft()

            if len(timestamps) >= self.limit:
                logger.debug("Rate limit hit for client %s", client_key)
                return False

            timestamps.append(now)
            return True

    def sweep(self) -> int:
        """Drop clients with no timestamp inside the window. Returns count."""
        with self._lock:
            cutoff = self._clock() - self.window_seconds
            stale = [
                key
                for key, timestamps in self._requests.items()
                if not timestamps or timestamps[-1] <= cutoff
            ]
            for key in stale:
                del self._requests[key]

        if stale:
            logger.debug("Rate limiter sweep evicted %d clients", len(stale))
        return len(stale)

    @property
    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._requests)

    # -----------------------------------------------------------------------
    # Background sweep lifecycle
    # -----------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to exit."""
        task = self._sweep_task
        self._sweep_task = None
        if task is None:
            return
        task.cancel()
        await asyncio.wait({task})

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.window_seconds)
            self.sweep()
