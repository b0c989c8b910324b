import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Optional


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """In-memory TTL cache with LRU eviction.

    Backs the bonding-curve mint index and the SOL/USD price lookup.
    """

    def __init__(self, default_ttl: float = 300, max_size: int = 1000):
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._cache: Dict[Hashable, CacheEntry] = {}
        self._access_order: list = []
        self._lock = asyncio.Lock()

    async def get(self, key: Hashable) -> Optional[Any]:
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None

            if time.monotonic() > entry.expires_at:
                self._drop(key)
                return None

            self._touch(key)
            return entry.value

    async def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        async with self._lock:
            ttl = self.default_ttl if ttl is None else ttl
            self._cache[key] = CacheEntry(value=value, expires_at=time.monotonic() + ttl)
            self._touch(key)

            while len(self._cache) > self.max_size:
                oldest_key = self._access_order.pop(0)
                self._cache.pop(oldest_key, None)

    async def invalidate(self, key: Hashable) -> None:
        async with self._lock:
            self._drop(key)

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()
            self._access_order.clear()

    def size(self) -> int:
        return len(self._cache)

    def _touch(self, key: Hashable) -> None:
        if key in self._access_order:
            self._access_order.remove(key)
        self._access_order.append(key)

    def _drop(self, key: Hashable) -> None:
        self._cache.pop(key, None)
        if key in self._access_order:
            self._access_order.remove(key)
