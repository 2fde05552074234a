from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import structlog
from fastapi import FastAPI

from request_limiter.api.middleware import RateLimitMiddleware
from request_limiter.limiter import LimiterOptions, RateLimiter
from request_limiter.observability.metrics import LimiterMetrics
from request_limiter.store.base import Store
from request_limiter.store.memory import MemoryStore

logger = structlog.get_logger()

StoreFactory = Callable[[int, str], Store]


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimitPlugin:
    """Installs rate limiting on a FastAPI app.

    Global options are merged with per-route overrides when each limiter is
    created. Every limiter gets its own store from store_factory, so a global
    limiter and a route limiter never count into the same history.
    """

    def __init__(
        self,
        app: FastAPI,
        options: LimiterOptions | None = None,
        *,
        store_factory: StoreFactory | None = None,
        metrics: LimiterMetrics | None = None,
        global_: bool = False,
        clock: Callable[[], int] = _now_ms,
        retry_attempts: int = 1,
        retry_min_wait: float = 0,
        retry_max_wait: float = 1,
        store_timeout_seconds: float | None = None,
        **global_overrides: Any,
    ) -> None:
        options = options or LimiterOptions()
        self._app = app
        self._options = options.merged(**global_overrides) if global_overrides else options
        self._clock = clock
        self._store_factory = store_factory or (
            lambda window_ms, namespace: MemoryStore(window_ms, clock=clock)
        )
        self._metrics = metrics
        self._retry = (retry_attempts, retry_min_wait, retry_max_wait)
        self._store_timeout = store_timeout_seconds
        self._stores: list[Store] = []
        self.global_limiter: RateLimiter | None = None

        app.state.rate_limit = self
        if global_:
            self.global_limiter = self.protect(namespace="global")
        logger.info("rate_limit_plugin_loaded", global_limit=global_)

    @property
    def options(self) -> LimiterOptions:
        return self._options

    def rate_limit(self, namespace: str = "route", **overrides: Any) -> RateLimiter:
        """Create a limiter from the global options plus overrides."""
        options = self._options.merged(**overrides) if overrides else self._options
        store = self._store_factory(options.window_ms, namespace)
        self._stores.append(store)
        attempts, min_wait, max_wait = self._retry
        return RateLimiter(
            options,
            store=store,
            clock=self._clock,
            retry_attempts=attempts,
            retry_min_wait=min_wait,
            retry_max_wait=max_wait,
        )

    def protect(
        self,
        path_prefix: str | None = None,
        *,
        namespace: str | None = None,
        **overrides: Any,
    ) -> RateLimiter:
        """Install a limiter for requests under path_prefix, or all requests."""
        limiter = self.rate_limit(namespace or path_prefix or "global", **overrides)
        self._app.add_middleware(
            RateLimitMiddleware,
            limiter=limiter,
            path_prefix=path_prefix,
            metrics=self._metrics,
            store_timeout_seconds=self._store_timeout,
        )
        return limiter

    async def close(self) -> None:
        for store in self._stores:
            await store.close()
        self._stores.clear()
