from __future__ import annotations

from collections.abc import Callable

from request_limiter.config import Settings, StorageType
from request_limiter.store.base import Store
from request_limiter.store.memory import MemoryStore
from request_limiter.store.redis import RedisStore


def create_store(settings: Settings, window_ms: int | None = None, namespace: str = "") -> Store:
    """Create the hit history store selected by storage_type.

    namespace keeps keys of different limiters apart on a shared Redis.
    """
    window = window_ms or settings.rate_limit_window_ms
    match settings.storage_type:
        case StorageType.REDIS:
            prefix = settings.redis_key_prefix
            if namespace:
                prefix = f"{prefix}{namespace}:"
            return RedisStore.from_url(
                settings.redis_url.get_secret_value(),
                window,
                prefix=prefix,
            )
        case StorageType.MEMORY:
            return MemoryStore(window)


def store_factory(settings: Settings) -> Callable[[int, str], Store]:
    """Return a callable building one store per limiter."""

    def build(window_ms: int, namespace: str) -> Store:
        return create_store(settings, window_ms, namespace)

    return build
