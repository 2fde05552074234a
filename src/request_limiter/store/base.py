from __future__ import annotations

from typing import Protocol, runtime_checkable

# Millisecond epoch timestamps, oldest first.
HitHistory = list[int]


def prune_history(history: HitHistory, window_start_ms: int) -> HitHistory:
    """Drop every timestamp at or before window_start_ms."""
    return [hit for hit in history if hit > window_start_ms]


class Store(Protocol):
    """Protocol for per-key hit history persistence.

    Implementations never prune on read; pruning belongs to the caller so
    every backend shares one algorithm.
    """

    async def get(self, key: str) -> HitHistory | None: ...

    async def set(self, key: str, history: HitHistory) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class AtomicStore(Protocol):
    """Store that can prune, append and read a key's history in one step."""

    async def record_hit(self, key: str, now_ms: int, window_ms: int) -> HitHistory:
        """Prune expired hits, append now_ms and return the stored history."""
        ...

    async def pop_last(self, key: str) -> HitHistory | None:
        """Remove the most recent hit. Returns the remaining history, or None for unknown keys."""
        ...
