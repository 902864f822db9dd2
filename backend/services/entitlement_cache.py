"""Isolation-safe entitlement cache.

Every entry is keyed by tenant id and nothing else. There is no "current
tenant" slot: a lookup for one tenant can only ever see the entry written for
that same tenant id.

Two scopes are provided:
- TenantCache: process-wide, TTL-bounded, explicitly invalidated after writes
  to tenant_config (plan change, override toggle).
- RequestScopedMemo: lives for one request and is discarded with it.

Concurrent misses for the same tenant share one in-flight load. A load that
started before invalidate() is never stored, so an invalidation is always
visible to the next lookup.
"""
import asyncio
import os
import time
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = float(os.getenv("FEATURE_CACHE_TTL_SECONDS", "300"))

Loader = Callable[[], Awaitable[Any]]


def _require_tenant_key(tenant_id: Optional[str]) -> str:
    if not isinstance(tenant_id, str) or not tenant_id.strip():
        raise ValueError("Cache lookups require a non-empty tenant id")
    return tenant_id


@dataclass
class _CacheEntry:
    value: Any
    stored_at: float


class TenantCache:
    """Mapping of tenant id -> value with TTL expiry."""

    def __init__(
        self,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        name: str = "tenant",
    ):
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: Dict[str, _CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._generations: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, tenant_id: str) -> bool:
        return self.get(tenant_id) is not None

    def _is_fresh(self, entry: _CacheEntry) -> bool:
        return (self._clock() - entry.stored_at) < self.ttl_seconds

    def get(self, tenant_id: str) -> Optional[Any]:
        """Return the fresh value for tenant_id, or None on miss/expiry."""
        key = _require_tenant_key(tenant_id)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not self._is_fresh(entry):
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, tenant_id: str, value: Any) -> None:
        key = _require_tenant_key(tenant_id)
        self._entries[key] = _CacheEntry(value=value, stored_at=self._clock())

    async def get_or_load(self, tenant_id: str, loader: Loader) -> Any:
        """
        Return the cached value for tenant_id, loading it on a miss.

        Loader failures propagate to every waiter and nothing is cached.
        """
        key = _require_tenant_key(tenant_id)
        cached = self.get(key)
        if cached is not None:
            return cached

        loop = asyncio.get_running_loop()
        task = self._inflight.get(key)
        if task is None or task.done() or task.get_loop() is not loop:
            generation = self._generations.get(key, 0)
            task = loop.create_task(self._load(key, loader, generation))
            self._inflight[key] = task
        return await asyncio.shield(task)

    async def _load(self, key: str, loader: Loader, generation: int) -> Any:
        try:
            value = await loader()
            if value is not None and self._generations.get(key, 0) == generation:
                self._entries[key] = _CacheEntry(value=value, stored_at=self._clock())
            return value
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    def invalidate(self, tenant_id: str) -> None:
        key = _require_tenant_key(tenant_id)
        self._entries.pop(key, None)
        self._inflight.pop(key, None)
        self._generations[key] = self._generations.get(key, 0) + 1
        logger.info("Cache invalidated cache=%s tenant_id=%s", self.name, key)

    def invalidate_all(self) -> None:
        """Drop every entry. Administrative escape hatch."""
        for key in set(self._entries) | set(self._inflight):
            self._generations[key] = self._generations.get(key, 0) + 1
        count = len(self._entries)
        self._entries.clear()
        self._inflight.clear()
        logger.warning("Cache fully invalidated cache=%s entries=%d", self.name, count)

    def purge_expired(self) -> int:
        """Remove expired entries; returns how many were dropped."""
        expired = [key for key, entry in self._entries.items() if not self._is_fresh(entry)]
        for key in expired:
            self._entries.pop(key, None)
        if expired:
            logger.info("Cache sweep cache=%s purged=%d remaining=%d", self.name, len(expired), len(self._entries))
        return len(expired)


class RequestScopedMemo:
    """Per-request memo keyed by tenant id. Create one per request, never share it."""

    def __init__(self):
        self._values: Dict[str, Any] = {}

    def get(self, tenant_id: str) -> Optional[Any]:
        return self._values.get(_require_tenant_key(tenant_id))

    async def get_or_compute(self, tenant_id: str, compute: Loader) -> Any:
        key = _require_tenant_key(tenant_id)
        if key not in self._values:
            self._values[key] = await compute()
        return self._values[key]

    def forget(self, tenant_id: str) -> None:
        self._values.pop(_require_tenant_key(tenant_id), None)

    def clear(self) -> None:
        self._values.clear()


# Shared tenant config cache (keyed by tenant id)
tenant_config_cache = TenantCache(name="tenant_config")
