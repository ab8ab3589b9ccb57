"""
Tests for the stage result cache.

Tests cover:
- Fingerprint stability
- Hit/miss tracking
- Cached result marking
- Owner-based eviction with shared keys
- Disabled cache
- Thread safety
"""

import threading

from trajclean.core.cache import CacheManager, CacheStats, fingerprint
from trajclean.core.dataset import Dataset, StageResult


def _result(stage_id="size_filter"):
    return StageResult.applied(stage_id, Dataset.empty(), Dataset.empty())


CHAIN = [
    {"stage_id": "size_filter", "enabled": True, "parameters": {"min_size_mb": 10.0}},
    {"stage_id": "header_standardizer", "enabled": True, "parameters": {"retain_extras": False}},
]


class TestFingerprint:
    def test_key_order_irrelevant(self):
        reordered = [{"parameters": e["parameters"], "enabled": e["enabled"], "stage_id": e["stage_id"]} for e in CHAIN]
        assert fingerprint("abc", CHAIN) == fingerprint("abc", reordered)

    def test_content_changes_key(self):
        assert fingerprint("abc", CHAIN) != fingerprint("abd", CHAIN)

    def test_upstream_parameter_changes_key(self):
        edited = [dict(CHAIN[0], parameters={"min_size_mb": 5.0}), CHAIN[1]]
        assert fingerprint("abc", CHAIN) != fingerprint("abc", edited)

    def test_prefix_differs_from_full_chain(self):
        assert fingerprint("abc", CHAIN[:1]) != fingerprint("abc", CHAIN)

    def test_extra_inputs(self):
        assert fingerprint("abc", [], ingest={"delimiter": ","}) != fingerprint("abc", [], ingest={"delimiter": ";"})


def test_cache_stats_hit_rate():
    stats = CacheStats()
    assert stats.hit_rate() == 0.0
    stats.hits = 7
    stats.misses = 3
    assert stats.hit_rate() == 0.7


def test_get_or_compute_hit_and_miss():
    cache = CacheManager()
    calls = []

    def compute():
        calls.append(1)
        return _result()

    first = cache.get_or_compute("k", "a.csv", compute)
    second = cache.get_or_compute("k", "a.csv", compute)

    assert len(calls) == 1
    assert first.cached is False
    assert second.cached is True
    assert cache.get_stats()["hits"] == 1
    assert cache.get_stats()["misses"] == 1


def test_first_insert_wins():
    cache = CacheManager()
    first = _result("size_filter")
    stored = cache.insert("k", first, "a.csv")
    again = cache.insert("k", _result("other"), "a.csv")
    assert stored is first
    assert again is first


def test_evict_owner_keeps_shared_keys():
    """Identical files share keys; removing one keeps the other's entries."""
    cache = CacheManager()
    cache.insert("shared", _result(), "a.csv")
    cache.lookup("shared", owner="b.csv")
    cache.insert("only_a", _result(), "a.csv")

    evicted = cache.evict_owner("a.csv")

    assert evicted == 1
    assert "shared" in cache
    assert "only_a" not in cache
    assert cache.keys_for("b.csv") == {"shared"}


def test_disabled_cache_always_computes():
    cache = CacheManager(enabled=False)
    calls = []
    for _ in range(3):
        cache.get_or_compute("k", "a.csv", lambda: calls.append(1) or _result())
    assert len(calls) == 3
    assert len(cache) == 0


def test_clear():
    cache = CacheManager()
    cache.insert("k1", _result(), "a.csv")
    cache.insert("k2", _result(), "b.csv")
    cache.clear()
    assert len(cache) == 0
    assert cache.stats.evictions == 2


def test_concurrent_inserts():
    cache = CacheManager()

    def worker(i):
        for j in range(50):
            cache.get_or_compute(f"k{j}", f"file{i}.csv", _result)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(cache) == 50
    stats = cache.get_stats()
    assert stats["hits"] + stats["misses"] == 8 * 50
