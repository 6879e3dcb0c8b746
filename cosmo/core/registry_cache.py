"""
Process-wide TTL cache for registry snapshots.

Holds one immutable snapshot (a tuple of rows) that is fully replaced on
refresh, never mutated in place, so concurrent readers never observe a
half-written registry.  The clock is injectable for tests.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from cosmo.services.load_result import LoadResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Loader = Callable[[], Awaitable[LoadResult[list[T]]]]


class RegistryCache(Generic[T]):
    """TTL cache with explicit ``get`` / ``refresh`` / ``invalidate``."""

    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        clock: Optional[Clock] = None,
    ):
        self.name = name
        self.ttl_seconds = ttl_seconds
        self._clock: Clock = clock or time.monotonic
        self._snapshot: Optional[tuple[T, ...]] = None
        self._loaded_at: float = 0.0
        self._lock = asyncio.Lock()

    @property
    def snapshot(self) -> Optional[tuple[T, ...]]:
        return self._snapshot

    def is_fresh(self) -> bool:
        return self._fresh_snapshot() is not None

    def _fresh_snapshot(self) -> Optional[tuple[T, ...]]:
        if self._snapshot is None or (self._clock() - self._loaded_at) >= self.ttl_seconds:
            return None
        return self._snapshot

    async def get(self, loader: Loader[T]) -> LoadResult[tuple[T, ...]]:
        """Cached snapshot while fresh, else reload through ``loader``."""
        snapshot = self._fresh_snapshot()
        if snapshot is not None:
            return LoadResult.success(snapshot)
        return await self.refresh(loader, force=False)

    async def refresh(
        self,
        loader: Loader[T],
        force: bool = True,
    ) -> LoadResult[tuple[T, ...]]:
        """
        Reload and atomically replace the snapshot.

        A failed load leaves the cache empty (next call retries) and hands
        the error back to the caller, which decides how to degrade.
        """
        async with self._lock:
            snapshot = None if force else self._fresh_snapshot()
            if snapshot is not None:
                return LoadResult.success(snapshot)
            result = await loader()
            if not result.ok:
                logger.warning(f"{self.name} cache refresh failed: {result.error}")
                return LoadResult(value=tuple(result.value), error=result.error)
            self._snapshot = tuple(result.value)
            self._loaded_at = self._clock()
            logger.info(f"Loaded {len(self._snapshot)} {self.name} rows")
            return LoadResult.success(self._snapshot)

    def invalidate(self) -> None:
        """Drop the snapshot; the next ``get`` reloads."""
        self._snapshot = None
        self._loaded_at = 0.0
        logger.info(f"{self.name} cache invalidated")
