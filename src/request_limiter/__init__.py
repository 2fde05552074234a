"""Sliding window rate limiting.

A RateLimiter records each request's timestamp in a pluggable Store and
admits it while the count within the window stays at or below the limit.
"""

from __future__ import annotations

from request_limiter.api.plugin import RateLimitPlugin
from request_limiter.errors import (
    BackendError,
    ConfigurationError,
    RateLimitError,
    SerializationError,
)
from request_limiter.limiter import Admission, LimiterOptions, QuotaDecision, RateLimiter
from request_limiter.store.base import AtomicStore, HitHistory, Store
from request_limiter.store.memory import MemoryStore, create_memory_store
from request_limiter.store.redis import RedisStore, create_redis_store

__all__ = [
    "Admission",
    "AtomicStore",
    "BackendError",
    "ConfigurationError",
    "HitHistory",
    "LimiterOptions",
    "MemoryStore",
    "QuotaDecision",
    "RateLimitError",
    "RateLimitPlugin",
    "RateLimiter",
    "RedisStore",
    "SerializationError",
    "Store",
    "create_memory_store",
    "create_redis_store",
]
