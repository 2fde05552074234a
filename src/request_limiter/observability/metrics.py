from __future__ import annotations

import asyncio
import time

# Every counter the rate limit middleware can bump, reported even when zero.
DECISION_COUNTERS = ("checks", "admitted", "rejected", "retracted", "skipped", "store_errors")


class LimiterMetrics:
    """In-memory counters for rate limiting decisions, shared by all limiters of an app."""

    def __init__(self) -> None:
        self._counters: dict[str, int] = dict.fromkeys(DECISION_COUNTERS, 0)
        self._lock = asyncio.Lock()
        self._start_time = time.monotonic()

    async def increment(self, name: str, amount: int = 1) -> None:
        async with self._lock:
            self._counters[name] = self._counters.get(name, 0) + amount

    async def get_stats(self) -> dict[str, int | float]:
        async with self._lock:
            stats: dict[str, int | float] = dict(self._counters)
        checks = stats["checks"]
        stats["rejection_rate"] = round(stats["rejected"] / checks, 4) if checks else 0.0
        stats["uptime_seconds"] = round(time.monotonic() - self._start_time, 1)
        return stats
