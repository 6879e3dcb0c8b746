"""Tests for the TTL registry cache."""
from __future__ import annotations

from cosmo.core.registry_cache import RegistryCache
from cosmo.services.load_result import LoadResult


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def counting_loader(rows: list[str]):
    calls = {"n": 0}

    async def loader() -> LoadResult[list[str]]:
        calls["n"] += 1
        return LoadResult.success(list(rows))

    return loader, calls


class TestRegistryCache:

    async def test_serves_snapshot_while_fresh(self) -> None:
        clock = FakeClock()
        cache: RegistryCache[str] = RegistryCache("intent", ttl_seconds=300, clock=clock)
        loader, calls = counting_loader(["a", "b"])

        first = await cache.get(loader)
        clock.now += 299
        second = await cache.get(loader)

        assert first.value == ("a", "b")
        assert second.value is first.value
        assert calls["n"] == 1

    async def test_reloads_after_ttl(self) -> None:
        clock = FakeClock()
        cache: RegistryCache[str] = RegistryCache("intent", ttl_seconds=300, clock=clock)
        loader, calls = counting_loader(["a"])

        await cache.get(loader)
        clock.now += 300
        await cache.get(loader)
        assert calls["n"] == 2

    async def test_is_fresh_follows_ttl(self) -> None:
        clock = FakeClock()
        cache: RegistryCache[str] = RegistryCache("intent", ttl_seconds=300, clock=clock)
        assert not cache.is_fresh()
        loader, _ = counting_loader(["a"])
        await cache.get(loader)
        assert cache.is_fresh()
        clock.now += 300
        assert not cache.is_fresh()
        assert cache.snapshot == ("a",)

    async def test_refresh_forces_reload(self) -> None:
        cache: RegistryCache[str] = RegistryCache("intent", ttl_seconds=300, clock=FakeClock())
        loader, calls = counting_loader(["a"])
        await cache.get(loader)
        await cache.refresh(loader)
        assert calls["n"] == 2

    async def test_invalidate(self) -> None:
        cache: RegistryCache[str] = RegistryCache("intent", ttl_seconds=300, clock=FakeClock())
        loader, calls = counting_loader(["a"])
        await cache.get(loader)
        cache.invalidate()
        assert cache.snapshot is None
        assert not cache.is_fresh()
        await cache.get(loader)
        assert calls["n"] == 2

    async def test_failed_load_leaves_cache_empty(self) -> None:
        cache: RegistryCache[str] = RegistryCache("intent", ttl_seconds=300, clock=FakeClock())

        async def broken() -> LoadResult[list[str]]:
            return LoadResult.failure([], "cosmo_intents", RuntimeError("db down"))

        result = await cache.get(broken)
        assert not result.ok
        assert result.value == ()
        assert result.error is not None
        assert result.error.source == "cosmo_intents"
        assert cache.snapshot is None
