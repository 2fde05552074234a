from __future__ import annotations

import asyncio

import pytest

from request_limiter.errors import ConfigurationError
from request_limiter.store.base import AtomicStore, prune_history
from request_limiter.store.memory import MemoryStore, create_memory_store
from tests.conftest import FakeClock


@pytest.fixture
async def store(clock: FakeClock):
    memory_store = MemoryStore(1000, clock=clock)
    yield memory_store
    await memory_store.close()


@pytest.mark.asyncio
async def test_get_unknown_key_returns_none(store: MemoryStore) -> None:
    assert await store.get("missing") is None


@pytest.mark.asyncio
async def test_set_and_get(store: MemoryStore) -> None:
    await store.set("A", [1, 2, 3])
    assert await store.get("A") == [1, 2, 3]


@pytest.mark.asyncio
async def test_get_does_not_prune(store: MemoryStore, clock: FakeClock) -> None:
    await store.set("A", [0, clock.now])
    assert await store.get("A") == [0, clock.now]


@pytest.mark.asyncio
async def test_returned_history_is_a_copy(store: MemoryStore) -> None:
    await store.set("A", [1])
    history = await store.get("A")
    history.append(2)
    assert await store.get("A") == [1]


@pytest.mark.asyncio
async def test_sweep_drops_idle_keys(store: MemoryStore, clock: FakeClock) -> None:
    await store.set("idle", [clock.now - 5000])
    await store.set("active", [clock.now - 5000, clock.now - 10])
    removed = await store.sweep()
    assert removed == 1
    assert await store.get("idle") is None
    assert await store.get("active") == [clock.now - 10]
    assert len(store) == 1


@pytest.mark.asyncio
async def test_sweep_twice_is_noop(store: MemoryStore, clock: FakeClock) -> None:
    await store.set("A", [clock.now - 2000, clock.now - 500, clock.now])
    await store.sweep()
    first = await store.get("A")
    assert await store.sweep() == 0
    assert await store.get("A") == first


def test_prune_history_idempotent() -> None:
    history = [100, 200, 300, 400]
    once = prune_history(history, 200)
    assert once == [300, 400]
    assert prune_history(once, 200) == once


@pytest.mark.asyncio
async def test_background_sweep_runs_every_window() -> None:
    memory_store = MemoryStore(20)
    await memory_store.set("stale", [0])
    assert memory_store.running is True
    await asyncio.sleep(0.1)
    assert len(memory_store) == 0
    await memory_store.close()


@pytest.mark.asyncio
async def test_close_is_idempotent(store: MemoryStore) -> None:
    assert store.running is True
    await store.close()
    await store.close()
    assert store.running is False


@pytest.mark.asyncio
async def test_closed_store_does_not_restart(store: MemoryStore) -> None:
    await store.close()
    await store.set("A", [1])
    assert store.running is False
    assert await store.get("A") == [1]


def test_construct_outside_event_loop_defers_sweep() -> None:
    memory_store = MemoryStore(1000)
    assert memory_store.running is False


def test_rejects_non_positive_window() -> None:
    with pytest.raises(ConfigurationError):
        MemoryStore(0)


@pytest.mark.asyncio
async def test_is_atomic_store(store: MemoryStore) -> None:
    assert isinstance(store, AtomicStore)


@pytest.mark.asyncio
async def test_record_hit_prunes_and_appends(store: MemoryStore, clock: FakeClock) -> None:
    await store.set("A", [clock.now - 1000, clock.now - 999])
    history = await store.record_hit("A", clock.now, 1000)
    assert history == [clock.now - 999, clock.now]


@pytest.mark.asyncio
async def test_pop_last(store: MemoryStore) -> None:
    await store.set("A", [1, 2])
    assert await store.pop_last("A") == [1]
    assert await store.pop_last("A") == []
    assert await store.get("A") is None
    assert await store.pop_last("A") is None


@pytest.mark.asyncio
async def test_concurrent_record_hit_has_no_lost_updates(store: MemoryStore, clock: FakeClock) -> None:
    results = await asyncio.gather(*(store.record_hit("B", clock.now, 1000) for _ in range(2)))
    assert sorted(len(history) for history in results) == [1, 2]


@pytest.mark.asyncio
async def test_create_memory_store(clock: FakeClock) -> None:
    memory_store = create_memory_store(500, clock=clock)
    assert memory_store.window_ms == 500
    await memory_store.close()
