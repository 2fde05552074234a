from __future__ import annotations

import json
import math

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from request_limiter.errors import BackendError, ConfigurationError, SerializationError
from request_limiter.store.base import HitHistory

logger = structlog.get_logger()

DEFAULT_PREFIX = "ratelimit:"


def encode_history(history: HitHistory) -> str:
    return json.dumps([int(hit) for hit in history])


def decode_history(payload: str | bytes) -> HitHistory:
    """Decode a stored JSON list of millisecond timestamps."""
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"Invalid hit history payload: {exc}") from exc
    if not isinstance(data, list) or not all(
        isinstance(hit, (int, float)) and not isinstance(hit, bool) and math.isfinite(hit)
        for hit in data
    ):
        raise SerializationError("Hit history payload must be a list of timestamps")
    return [int(hit) for hit in data]


class RedisStore:
    """Hit history store backed by Redis.

    Each key is written with ``SETEX`` so idle keys expire on their own after
    ``ceil(window_ms / 1000)`` seconds. Reads and writes are separate round
    trips, so concurrent checks on the same key can lose updates.
    """

    def __init__(
        self,
        client: Redis,
        window_ms: int,
        *,
        prefix: str = DEFAULT_PREFIX,
        owns_client: bool = False,
    ) -> None:
        if window_ms <= 0:
            raise ConfigurationError("window_ms must be a positive number of milliseconds")
        self._redis = client
        self._window_ms = window_ms
        self._prefix = prefix
        self._owns_client = owns_client

    @classmethod
    def from_url(cls, url: str, window_ms: int, *, prefix: str = DEFAULT_PREFIX) -> RedisStore:
        client = Redis.from_url(url, decode_responses=True)
        return cls(client, window_ms, prefix=prefix, owns_client=True)

    @property
    def window_ms(self) -> int:
        return self._window_ms

    @property
    def ttl_seconds(self) -> int:
        return math.ceil(self._window_ms / 1000)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> HitHistory | None:
        try:
            payload = await self._redis.get(self._key(key))
        except (RedisError, OSError) as exc:
            raise BackendError(str(exc), operation="get", key=key) from exc
        if payload is None:
            return None
        try:
            return decode_history(payload)
        except SerializationError:
            logger.warning("redis_payload_discarded", key=key, exc_info=True)
            return None

    async def set(self, key: str, history: HitHistory) -> None:
        try:
            await self._redis.setex(self._key(key), self.ttl_seconds, encode_history(history))
        except (RedisError, OSError) as exc:
            raise BackendError(str(exc), operation="set", key=key) from exc

    async def close(self) -> None:
        if self._owns_client:
            await self._redis.aclose()


def create_redis_store(client: Redis, window_ms: int, **kwargs) -> RedisStore:
    return RedisStore(client, window_ms, **kwargs)
