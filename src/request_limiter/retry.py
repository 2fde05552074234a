from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from request_limiter.errors import BackendError

logger = structlog.get_logger()

T = TypeVar("T")


def create_store_call_with_retry(
    max_attempts: int = 1,
    min_wait: float = 0,
    max_wait: float = 1,
):
    """Create a retrying wrapper for store calls.

    Returns an async function that awaits ``fn(*args)`` and retries with
    exponential backoff while it raises BackendError. The last BackendError
    is re-raised once attempts are exhausted.
    """

    @retry(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(BackendError),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            "store_retry",
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()) if retry_state.outcome else "unknown",
        ),
    )
    async def call_with_retry(fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        return await fn(*args)

    return call_with_retry
