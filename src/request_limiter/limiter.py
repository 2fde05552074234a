from __future__ import annotations

import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from request_limiter.errors import BackendError, ConfigurationError, RateLimitError
from request_limiter.retry import create_store_call_with_retry
from request_limiter.store.base import AtomicStore, HitHistory, Store, prune_history
from request_limiter.store.memory import MemoryStore

logger = structlog.get_logger()


def _now_ms() -> int:
    return int(time.time() * 1000)


def client_address(request: Any) -> str:
    """Default key: the caller's network address."""
    client = getattr(request, "client", None)
    return client.host if client else "unknown"


def never_skip(request: Any) -> bool:
    return False


class LimiterOptions(BaseModel):
    """Immutable limiter configuration, validated once at construction."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    window_ms: int = Field(60000, gt=0)
    limit: int = Field(100, gt=0)
    message: str = "Too many requests, please try again later."
    status_code: int = Field(429, ge=400, le=599)
    count_failed: bool = True
    count_successful: bool = True
    key_fn: Callable[[Any], str] = client_address
    skip_fn: Callable[[Any], bool] = never_skip
    on_exceeded: Callable[..., Any] | None = None

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid rate limit options: {exc}") from exc

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> LimiterOptions:
        values: dict[str, Any] = {
            "window_ms": settings.rate_limit_window_ms,
            "limit": settings.rate_limit_max,
            "message": settings.rate_limit_message,
            "status_code": settings.rate_limit_status_code,
            "count_failed": settings.rate_limit_count_failed,
            "count_successful": settings.rate_limit_count_successful,
        }
        values.update(overrides)
        return cls(**values)

    def merged(self, **overrides: Any) -> LimiterOptions:
        """Return a new validated instance with overrides applied on top."""
        values = {name: getattr(self, name) for name in type(self).model_fields}
        values.update(overrides)
        return type(self)(**values)

    def counts(self, status_code: int) -> bool:
        """Whether a request that finished with status_code stays counted."""
        if status_code >= 400:
            return self.count_failed
        return self.count_successful

    @property
    def retry_after_seconds(self) -> int:
        return math.ceil(self.window_ms / 1000)


class QuotaDecision(BaseModel):
    """Quota state for one key right after a hit was recorded."""

    model_config = ConfigDict(frozen=True)

    limit: int
    current: int
    remaining: int
    reset_at_ms: int

    @property
    def admitted(self) -> bool:
        # The limit-th hit is still admitted; the first rejected one is limit + 1.
        return self.current <= self.limit

    @property
    def reset_at_seconds(self) -> int:
        return math.ceil(self.reset_at_ms / 1000)


@dataclass
class Admission:
    """Outcome of admitting one request, to be finalized once it completes."""

    limiter: RateLimiter
    key: str
    decision: QuotaDecision
    _finalized: bool = field(default=False, init=False, repr=False)

    @property
    def admitted(self) -> bool:
        return self.decision.admitted

    @property
    def finalized(self) -> bool:
        return self._finalized

    async def finalize(self, status_code: int) -> bool:
        """Report the final status of the request.

        Retracts the hit when the options say this outcome should not count.
        Retraction is best-effort: store failures are logged, never raised.
        Returns True when a hit was retracted.
        """
        if self._finalized:
            raise RuntimeError(f"Admission for key {self.key!r} was already finalized")
        self._finalized = True

        if not self.admitted or self.limiter.options.counts(status_code):
            return False
        try:
            await self.limiter.retract(self.key)
        except Exception:
            logger.warning(
                "rate_limit_retract_failed", key=self.key, status_code=status_code, exc_info=True
            )
            return False
        return True


class RateLimiter:
    """Sliding window log rate limiter.

    Holds no per-key state; every check reads, prunes, appends and writes the
    key's hit history through the store. Stores implementing AtomicStore get
    the whole step done under their own lock; plain stores run it as a
    get/set pair, which can undercount concurrent hits on the same key.
    """

    def __init__(
        self,
        options: LimiterOptions | None = None,
        *,
        store: Store | None = None,
        clock: Callable[[], int] = _now_ms,
        retry_attempts: int = 1,
        retry_min_wait: float = 0,
        retry_max_wait: float = 1,
        **overrides: Any,
    ) -> None:
        options = options or LimiterOptions()
        if overrides:
            options = options.merged(**overrides)
        self._options = options
        self._clock = clock
        self._owns_store = store is None
        self._store: Store = store if store is not None else MemoryStore(options.window_ms, clock=clock)
        self._retry_settings = (retry_attempts, retry_min_wait, retry_max_wait)
        self._call_with_retry = create_store_call_with_retry(
            max_attempts=retry_attempts,
            min_wait=retry_min_wait,
            max_wait=retry_max_wait,
        )

    @property
    def options(self) -> LimiterOptions:
        return self._options

    @property
    def store(self) -> Store:
        return self._store

    def derive(self, *, store: Store | None = None, **overrides: Any) -> RateLimiter:
        """Create a limiter with overridden options.

        The store is shared unless the window changes, in which case a fresh
        MemoryStore is used unless one is passed in.
        """
        options = self._options.merged(**overrides)
        if store is None and options.window_ms == self._options.window_ms:
            store = self._store
        attempts, min_wait, max_wait = self._retry_settings
        return RateLimiter(
            options,
            store=store,
            clock=self._clock,
            retry_attempts=attempts,
            retry_min_wait=min_wait,
            retry_max_wait=max_wait,
        )

    async def check(self, key: str) -> QuotaDecision:
        """Record a hit for key and return the resulting quota.

        The hit is recorded before admission is decided, so rejected requests
        also occupy a slot until they expire.

        Raises:
            BackendError: the store failed after the configured retries.
        """
        now = self._clock()
        window_ms = self._options.window_ms

        if isinstance(self._store, AtomicStore):
            history = await self._call(self._store.record_hit, key, now, window_ms)
        else:
            stored = await self._call(self._store.get, key)
            history = prune_history(stored or [], now - window_ms)
            history.append(now)
            await self._call(self._store.set, key, history)

        return self._decide(history)

    async def retract(self, key: str) -> None:
        """Remove the most recent hit for key.

        Last-in-first-out and not atomic with concurrent checks on the same
        key, so under contention the removed hit may belong to another request.
        """
        if isinstance(self._store, AtomicStore):
            await self._call(self._store.pop_last, key)
            return

        history = await self._call(self._store.get, key)
        if not history:
            return
        history.pop()
        await self._call(self._store.set, key, history)

    async def admit(self, request: Any) -> Admission | None:
        """Check a request. Returns None when skip_fn bypasses counting."""
        if self._options.skip_fn(request):
            return None
        key = self._options.key_fn(request)
        decision = await self.check(key)
        return Admission(limiter=self, key=key, decision=decision)

    async def close(self) -> None:
        """Close the store if this limiter created it."""
        if self._owns_store:
            await self._store.close()

    def _decide(self, history: HitHistory) -> QuotaDecision:
        limit = self._options.limit
        current = len(history)
        return QuotaDecision(
            limit=limit,
            current=current,
            remaining=max(0, limit - current),
            reset_at_ms=history[0] + self._options.window_ms,
        )

    async def _call(self, fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        return await self._call_with_retry(self._invoke, fn, *args)

    @staticmethod
    async def _invoke(fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        try:
            return await fn(*args)
        except RateLimitError:
            raise
        except Exception as exc:
            key = str(args[0]) if args else ""
            raise BackendError(str(exc), operation=fn.__name__, key=key) from exc
