"""
In-process response cache for upstream API calls.

Entries expire after a fixed TTL and are evicted lazily on lookup. When the
cache is full, the oldest *inserted* entry is dropped; reads do not refresh
an entry's position, so this is insertion-order eviction rather than LRU.
"""

from __future__ import annotations

import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import structlog

logger = structlog.get_logger(__name__)

_MISS = object()


@dataclass(slots=True)
class CacheEntry:
    key: str
    value: Any
    inserted_at: float


class ResponseCache:
    """Bounded TTL cache keyed on a canonical request signature."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_keys: int = 1000,
        *,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if max_keys <= 0:
            raise ValueError("max_keys must be > 0")
        self.ttl_seconds = ttl_seconds
        self.max_keys = max_keys
        self._clock = clock or time.monotonic
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.hit_count = 0
        self.miss_count = 0
        self.eviction_count = 0

    @staticmethod
    def make_key(method: str, path: str, params: Optional[Mapping[str, Any]] = None) -> str:
        """Canonical signature: parameter order never changes the key."""
        payload = json.dumps(dict(params or {}), sort_keys=True, separators=(",", ":"), default=str)
        return f"{method.upper()}:{path}:{payload}"

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self.miss_count += 1
            return default
        if self._clock() - entry.inserted_at > self.ttl_seconds:
            del self._entries[key]
            self.miss_count += 1
            return default
        self.hit_count += 1
        return entry.value

    def lookup(self, key: str) -> tuple[bool, Any]:
        """Return ``(hit, value)`` so cached ``None`` values stay distinguishable."""
        value = self.get(key, _MISS)
        if value is _MISS:
            return False, None
        return True, value

    def set(self, key: str, value: Any) -> None:
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_keys:
            oldest, _ = self._entries.popitem(last=False)
            self.eviction_count += 1
            logger.debug("Cache eviction", key=oldest)
        self._entries[key] = CacheEntry(key=key, value=value, inserted_at=self._clock())

    def clear(self) -> int:
        removed = len(self._entries)
        self._entries.clear()
        logger.info("Response cache cleared", removed=removed)
        return removed

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def stats(self) -> Dict[str, Any]:
        total = self.hit_count + self.miss_count
        return {
            "hits": self.hit_count,
            "misses": self.miss_count,
            "evictions": self.eviction_count,
            "size": len(self._entries),
            "maxSize": self.max_keys,
            "ttlSeconds": self.ttl_seconds,
            "hitRate": round(self.hit_count / total, 4) if total else 0.0,
        }
