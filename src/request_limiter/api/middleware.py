from __future__ import annotations

import asyncio
import inspect

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from request_limiter.errors import BackendError
from request_limiter.limiter import Admission, QuotaDecision, RateLimiter
from request_limiter.observability.metrics import LimiterMetrics

logger = structlog.get_logger()


def rate_limit_headers(decision: QuotaDecision) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_at_seconds),
    }


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply a RateLimiter to every request, or to those under path_prefix.

    Store failures fail open: the request proceeds without rate limit headers.
    """

    def __init__(
        self,
        app: ASGIApp,
        limiter: RateLimiter,
        *,
        path_prefix: str | None = None,
        metrics: LimiterMetrics | None = None,
        store_timeout_seconds: float | None = None,
    ) -> None:
        super().__init__(app)
        self._limiter = limiter
        self._path_prefix = path_prefix
        self._metrics = metrics
        self._store_timeout = store_timeout_seconds

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self._path_prefix and not self._matches(request.url.path):
            return await call_next(request)

        try:
            admission = await self._admit(request)
        except BackendError as exc:
            logger.error(
                "rate_limit_store_error",
                path=request.url.path,
                operation=exc.operation,
                error=str(exc),
            )
            await self._count("store_errors")
            return await call_next(request)

        if admission is None:
            await self._count("skipped")
            return await call_next(request)

        await self._count("checks")
        headers = rate_limit_headers(admission.decision)

        if not admission.admitted:
            logger.warning(
                "rate_limit_exceeded",
                key=admission.key,
                current=admission.decision.current,
                limit=admission.decision.limit,
            )
            await self._count("rejected")
            response = await self._reject(request, admission)
            await admission.finalize(response.status_code)
            response.headers.update(headers)
            return response

        await self._count("admitted")
        try:
            response = await call_next(request)
        except Exception:
            if await admission.finalize(500):
                await self._count("retracted")
            raise

        response.headers.update(headers)
        if await admission.finalize(response.status_code):
            await self._count("retracted")
        return response

    def _matches(self, path: str) -> bool:
        prefix = self._path_prefix.rstrip("/")
        return path == self._path_prefix or path == prefix or path.startswith(prefix + "/")

    async def _admit(self, request: Request) -> Admission | None:
        if self._store_timeout is None:
            return await self._limiter.admit(request)
        try:
            return await asyncio.wait_for(self._limiter.admit(request), self._store_timeout)
        except asyncio.TimeoutError as exc:
            raise BackendError(
                f"Rate limit store did not answer within {self._store_timeout}s",
                operation="check",
            ) from exc

    async def _reject(self, request: Request, admission: Admission) -> Response:
        options = self._limiter.options
        if options.on_exceeded is not None:
            response = options.on_exceeded(request, admission.decision)
            if inspect.isawaitable(response):
                response = await response
            return response
        return JSONResponse(
            {"error": options.message, "retryAfter": options.retry_after_seconds},
            status_code=options.status_code,
        )

    async def _count(self, name: str) -> None:
        if self._metrics:
            await self._metrics.increment(name)
