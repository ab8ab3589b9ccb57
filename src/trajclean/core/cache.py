"""
Stage result cache.

Maps a chain fingerprint to the StageResult computed for it. A fingerprint
covers the raw content hash plus every (stage_id, enabled, parameters)
entry up to and including the computed stage, so an edit anywhere upstream
yields a new key. Entries are evicted only when their owning file leaves
the session.
"""

from __future__ import annotations

import hashlib
import json
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from .dataset import StageResult

# Owner of corpus-stage results; they depend on every surviving file
CORPUS_OWNER = "__corpus__"


def fingerprint(content_hash: str, chain: List[Dict[str, Any]], **extra: Any) -> str:
    """
    Stable fingerprint for a stage output.

    Args:
        content_hash: SHA-256 of the raw file content (or corpus digest)
        chain: Serialized stage entries up to and including the target stage
        **extra: Further inputs that change the output (e.g. ingestion settings)

    Example:
        >>> a = fingerprint("abc", [{"stage_id": "size_filter", "enabled": True, "parameters": {}}])
        >>> a == fingerprint("abc", [{"parameters": {}, "enabled": True, "stage_id": "size_filter"}])
        True
    """
    payload = {"content": content_hash, "chain": chain, "extra": extra}
    blob = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    """Single cache entry with metadata"""
    key: str
    value: Any
    owner: str
    created_at: datetime
    access_count: int = 0


class CacheStats:
    """Cache statistics for monitoring"""
    def __init__(self):
        self.hits: int = 0
        self.misses: int = 0
        self.evictions: int = 0

    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def __str__(self) -> str:
        return f"Hits: {self.hits}, Misses: {self.misses}, Hit Rate: {self.hit_rate():.1%}"


class CacheManager:
    """
    Thread-safe fingerprint -> result store.

    Concurrent misses on the same key may both compute; the first insert
    wins and both callers receive equivalent results.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._cache: Dict[str, CacheEntry] = {}
        self._owners: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()
        self._stats = CacheStats()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._cache

    def lookup(self, key: str, owner: Optional[str] = None) -> Optional[Any]:
        """Return the stored value or None, updating hit/miss counters."""
        if not self.enabled:
            return None
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats.misses += 1
                return None
            if owner is not None:
                self._owners.setdefault(owner, set()).add(key)
            entry.access_count += 1
            self._stats.hits += 1
            return entry.value

    def insert(self, key: str, value: Any, owner: str) -> Any:
        """Insert unless present; returns the value now stored under key."""
        if not self.enabled:
            return value
        with self._lock:
            self._owners.setdefault(owner, set()).add(key)
            existing = self._cache.get(key)
            if existing is not None:
                return existing.value
            self._cache[key] = CacheEntry(key=key, value=value, owner=owner, created_at=datetime.now())
            return value

    def get_or_compute(self, key: str, owner: str, compute: Callable[[], StageResult]) -> StageResult:
        """
        Return the cached StageResult for key, computing and inserting on a miss.

        Hits are returned marked as cached. Computation runs outside the lock.
        """
        hit = self.lookup(key, owner)
        if hit is not None:
            return hit.as_cached()
        return self.insert(key, compute(), owner)

    def evict_owner(self, owner: str) -> int:
        """Drop entries owned only by this file; returns the number evicted."""
        with self._lock:
            keys = self._owners.pop(owner, set())
            still_used = set().union(*self._owners.values()) if self._owners else set()
            evicted = 0
            for key in keys - still_used:
                if self._cache.pop(key, None) is not None:
                    evicted += 1
            self._stats.evictions += evicted
            return evicted

    def clear(self) -> None:
        with self._lock:
            self._stats.evictions += len(self._cache)
            self._cache.clear()
            self._owners.clear()

    def keys_for(self, owner: str) -> Set[str]:
        with self._lock:
            return set(self._owners.get(owner, set()))

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries": len(self._cache),
                "owners": len(self._owners),
                "hits": self._stats.hits,
                "misses": self._stats.misses,
                "hit_rate": self._stats.hit_rate(),
                "evictions": self._stats.evictions,
            }

    @property
    def stats(self) -> CacheStats:
        return self._stats
