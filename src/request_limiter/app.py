from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from request_limiter.api.plugin import RateLimitPlugin
from request_limiter.api.router import api_router
from request_limiter.config import get_settings
from request_limiter.limiter import LimiterOptions
from request_limiter.logging import setup_logging
from request_limiter.observability.metrics import LimiterMetrics
from request_limiter.store.factory import store_factory


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level, json_logs=settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.rate_limit.close()

    app = FastAPI(
        title="Request Limiter",
        version="0.1.0",
        description="Sliding window rate limiting with in-memory and Redis hit stores",
        lifespan=lifespan,
    )

    metrics = LimiterMetrics()
    RateLimitPlugin(
        app,
        LimiterOptions.from_settings(settings),
        store_factory=store_factory(settings),
        metrics=metrics,
        global_=settings.rate_limit_enabled and settings.rate_limit_global,
        retry_attempts=settings.store_retry_attempts,
        retry_min_wait=settings.store_retry_min_wait_seconds,
        retry_max_wait=settings.store_retry_max_wait_seconds,
        store_timeout_seconds=settings.store_timeout_seconds,
    )

    app.state.settings = settings
    app.state.metrics = metrics
    app.include_router(api_router, prefix="/api")

    return app


app = create_app()
