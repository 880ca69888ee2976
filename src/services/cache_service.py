from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from src.config.settings import CONTENT_TYPE_TTLS


_MISSING = object()


@dataclass
class CacheEntry:
    """A single cached value with its absolute expiry time."""
    value: Any
    expiry: float
    last_accessed: float
    content_type: Optional[str] = None


class CacheService:
    """
    In-memory TTL cache with content-type aware expiry and LRU eviction.

    Entries are kept in access order, so the first entry is always the least
    recently accessed one. All map operations run under a lock, which makes the
    cache safe to share between concurrent enrichment tasks.
    """

    def __init__(
        self,
        default_ttl: float = 15 * 60,
        max_size: int = 1000,
        cleanup_interval: float = 5 * 60,
        content_type_ttls: Optional[Dict[str, float]] = None,
        clock: Callable[[], float] = time.time,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self.default_ttl = default_ttl
        self.max_size = max_size
        self.cleanup_interval = cleanup_interval
        self.content_type_ttls: Dict[str, float] = dict(
            CONTENT_TYPE_TTLS if content_type_ttls is None else content_type_ttls
        )
        self._clock = clock

        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

        self.stats: Dict[str, int] = {"hits": 0, "misses": 0, "sets": 0, "evictions": 0, "expirations": 0}

        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings) -> "CacheService":
        return cls(
            default_ttl=settings.default_ttl,
            max_size=settings.max_size,
            cleanup_interval=settings.cleanup_interval,
            content_type_ttls=settings.content_type_ttls,
        )

    def _resolve_ttl(self, ttl: Optional[float], content_type: Optional[str]) -> float:
        if ttl is not None and ttl > 0:
            return ttl
        if content_type and content_type in self.content_type_ttls:
            return self.content_type_ttls[content_type]
        return self.default_ttl

    def _lookup(self, key: str) -> Any:
        """Return the cached value or ``_MISSING``; updates stats and access order."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.stats["misses"] += 1
                return _MISSING

            if now > entry.expiry:
                del self._entries[key]
                self.stats["misses"] += 1
                self.stats["expirations"] += 1
                return _MISSING

            entry.last_accessed = now
            self._entries.move_to_end(key)
            self.stats["hits"] += 1
            return entry.value

    def get(self, key: str, default: Any = None) -> Any:
        value = self._lookup(key)
        return default if value is _MISSING else value

    def set(self, key: str, value: Any, ttl: Optional[float] = None, content_type: Optional[str] = None) -> None:
        effective_ttl = self._resolve_ttl(ttl, content_type)
        now = self._clock()
        evicted: Optional[str] = None

        with self._lock:
            self.stats["sets"] += 1
            if key not in self._entries and len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                self.stats["evictions"] += 1

            self._entries[key] = CacheEntry(
                value=value,
                expiry=now + effective_ttl,
                last_accessed=now,
                content_type=content_type,
            )
            self._entries.move_to_end(key)

        if evicted is not None:
            self.logger.debug(f"Evicted least recently used cache item: {evicted}")

    async def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
        content_type: Optional[str] = None,
    ) -> Any:
        """
        Return the cached value for ``key`` or await ``compute_fn`` and cache its result.

        Exceptions raised by ``compute_fn`` propagate to the caller and nothing is cached.
        """
        cached = self._lookup(key)
        if cached is not _MISSING:
            return cached

        value = await compute_fn()
        self.set(key, value, ttl, content_type)
        return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        self.reset_stats()

    def __contains__(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and now <= entry.expiry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def cleanup(self) -> int:
        """Remove expired entries and return how many were purged."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now > entry.expiry]
            for key in expired:
                del self._entries[key]
            self.stats["expirations"] += len(expired)
            remaining = len(self._entries)

        if expired:
            self.logger.info(f"Cleaned up {len(expired)} expired cache items. Current cache size: {remaining}")
        return len(expired)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                self.cleanup()
            except Exception as e:
                self.logger.error(f"Cache cleanup failed: {e}")

    def start(self) -> None:
        """Start the periodic sweep. Must be called from a running event loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())
            self.logger.debug(f"Cache cleanup scheduled every {self.cleanup_interval}s")

    async def dispose(self) -> None:
        """Stop the periodic sweep."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.dispose()

    @property
    def hit_rate(self) -> float:
        reads = self.stats["hits"] + self.stats["misses"]
        return self.stats["hits"] / reads if reads else 0.0

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            size = len(self._entries)
        return {
            **self.stats,
            "hit_rate": f"{self.hit_rate * 100:.2f}%",
            "memory_size": size,
            "max_size": self.max_size,
        }

    def reset_stats(self) -> None:
        self.stats = {"hits": 0, "misses": 0, "sets": 0, "evictions": 0, "expirations": 0}

    def get_keys(self) -> List[str]:
        with self._lock:
            return list(self._entries.keys())

    def get_by_content_type(self, content_type: str) -> List[Dict[str, Any]]:
        with self._lock:
            items = [(key, entry) for key, entry in self._entries.items() if entry.content_type == content_type]
        return [
            {
                "key": key,
                "value": entry.value,
                "expiry": datetime.fromtimestamp(entry.expiry, tz=timezone.utc).isoformat(),
            }
            for key, entry in items
        ]
