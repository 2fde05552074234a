from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable

import structlog

from request_limiter.errors import ConfigurationError
from request_limiter.store.base import HitHistory, prune_history

logger = structlog.get_logger()


def _now_ms() -> int:
    return int(time.time() * 1000)


class MemoryStore:
    """In-process hit history store with a periodic sweep of idle keys.

    The sweep runs every ``window_ms`` on the running event loop. It starts
    on construction when a loop is running, otherwise on first use, and is
    stopped by ``close()``. Per-process only: multiple workers each keep
    their own counts.
    """

    def __init__(
        self,
        window_ms: int,
        *,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        if window_ms <= 0:
            raise ConfigurationError("window_ms must be a positive number of milliseconds")
        self._window_ms = window_ms
        self._clock = clock
        self._hits: dict[str, HitHistory] = {}
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task[None] | None = None
        self._closed = False
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self.start()

    @property
    def window_ms(self) -> int:
        return self._window_ms

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def __len__(self) -> int:
        return len(self._hits)

    def start(self) -> None:
        """Start the background sweep. No-op if already running or closed."""
        if self._closed or self.running:
            return
        self._sweeper = asyncio.get_running_loop().create_task(
            self._sweep_forever(), name="memory-store-sweep"
        )

    async def close(self) -> None:
        """Cancel the background sweep and wait for it to finish. Idempotent."""
        self._closed = True
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is None:
            return
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper

    async def get(self, key: str) -> HitHistory | None:
        self.start()
        async with self._lock:
            history = self._hits.get(key)
            return list(history) if history is not None else None

    async def set(self, key: str, history: HitHistory) -> None:
        self.start()
        async with self._lock:
            self._hits[key] = list(history)

    async def record_hit(self, key: str, now_ms: int, window_ms: int) -> HitHistory:
        self.start()
        async with self._lock:
            history = prune_history(self._hits.get(key, []), now_ms - window_ms)
            history.append(now_ms)
            self._hits[key] = history
            return list(history)

    async def pop_last(self, key: str) -> HitHistory | None:
        async with self._lock:
            history = self._hits.get(key)
            if history is None:
                return None
            if history:
                history.pop()
            if not history:
                del self._hits[key]
            return list(history)

    async def sweep(self) -> int:
        """Prune every key and drop the ones left empty. Returns the number of keys removed."""
        window_start = self._clock() - self._window_ms
        async with self._lock:
            snapshot = list(self._hits.items())
            removed = 0
            for key, history in snapshot:
                valid = prune_history(history, window_start)
                if valid:
                    self._hits[key] = valid
                else:
                    del self._hits[key]
                    removed += 1
        if removed:
            logger.debug("memory_store_sweep", removed=removed, remaining=len(self._hits))
        return removed

    async def _sweep_forever(self) -> None:
        interval = self._window_ms / 1000
        while True:
            await asyncio.sleep(interval)
            await self.sweep()


def create_memory_store(window_ms: int, **kwargs) -> MemoryStore:
    return MemoryStore(window_ms, **kwargs)
