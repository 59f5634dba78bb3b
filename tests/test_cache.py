from __future__ import annotations

import pytest

from pygovee._cache import MemoryCatalogCache


def test_memory_cache_round_trips_by_model_and_version() -> None:
    cache = MemoryCatalogCache()
    cache.put("H6065", "v1", b"blob")

    assert cache.get("H6065", "v1") == b"blob"
    assert cache.get("H6065", "v2") is None
    assert cache.get("H6076", "v1") is None


def test_memory_cache_evicts_least_recently_used() -> None:
    cache = MemoryCatalogCache(max_entries=2)
    cache.put("H6065", "v1", b"a")
    cache.put("H6076", "v1", b"b")
    assert cache.get("H6065", "v1") == b"a"

    cache.put("H6008", "v1", b"c")

    assert len(cache) == 2
    assert cache.get("H6076", "v1") is None
    assert cache.get("H6065", "v1") == b"a"
    assert cache.get("H6008", "v1") == b"c"


def test_memory_cache_rejects_empty_bound() -> None:
    with pytest.raises(ValueError):
        MemoryCatalogCache(max_entries=0)
