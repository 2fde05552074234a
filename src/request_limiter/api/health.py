from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter()


class RateLimitInfo(BaseModel):
    enabled: bool
    limit: int
    window_ms: int
    storage_type: str


class HealthResponse(BaseModel):
    status: str
    uptime_seconds: float
    rate_limit: RateLimitInfo | None = None
    metrics: dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check with the active limit and decision counters."""
    state = request.app.state
    metrics = getattr(state, "metrics", None)
    if metrics:
        stats = await metrics.get_stats()
        uptime = stats.pop("uptime_seconds", 0.0)
    else:
        stats = {}
        uptime = 0.0

    info = None
    plugin = getattr(state, "rate_limit", None)
    settings = getattr(state, "settings", None)
    if plugin is not None:
        info = RateLimitInfo(
            enabled=plugin.global_limiter is not None,
            limit=plugin.options.limit,
            window_ms=plugin.options.window_ms,
            storage_type=settings.storage_type.value if settings else "memory",
        )

    return HealthResponse(
        status="ok",
        uptime_seconds=uptime,
        rate_limit=info,
        metrics=stats,
    )
