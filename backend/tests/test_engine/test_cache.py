"""Tests for the disk-backed sample cache."""

import itertools
import json

import pytest

from app.engine.cache import INDEX_FILE, CacheManager, make_cache_key
from app.engine.config import QualityPreset, SamplingAlgorithm, SamplingStrategy
from app.engine.errors import CacheCreationFailedError
from app.engine.sampling.base import Sample


def _samples(n: int, offset: int = 0) -> list[Sample]:
    return [Sample(i + offset, i, (0.25, 0.5, 0.75, 1.0)) for i in range(n)]


def _ticking_clock():
    counter = itertools.count(1)
    return lambda: float(next(counter))


def test_round_trip(cache_dir):
    cache = CacheManager(cache_dir)
    samples = _samples(10)
    assert cache.put("key", samples)
    assert cache.get("key") == samples
    assert cache.contains("key")
    assert cache.count == 1
    assert cache.size_bytes > 0


def test_miss_returns_none(cache_dir):
    assert CacheManager(cache_dir).get("absent") is None


def test_index_survives_restart(cache_dir):
    CacheManager(cache_dir).put("key", _samples(3))
    reopened = CacheManager(cache_dir)
    assert reopened.keys() == ["key"]
    assert reopened.get("key") == _samples(3)
    index = json.loads((cache_dir / INDEX_FILE).read_text())
    entry = index["entries"]["key"]
    assert set(entry) == {"file_name", "size_bytes", "created_at", "last_accessed"}
    assert entry["file_name"] == CacheManager.file_name_for("key")


def test_lru_eviction_under_budget(cache_dir):
    cache = CacheManager(cache_dir, max_bytes=1024, clock=_ticking_clock())
    payload = _samples(15)
    for key in ("a", "b", "c"):
        assert cache.put(key, payload)
        assert cache.size_bytes <= 1024

    assert not cache.contains("a")
    assert cache.contains("b")
    assert cache.contains("c")
    files = sorted(p.name for p in cache_dir.glob("*.cache"))
    assert files == sorted(CacheManager.file_name_for(k) for k in ("b", "c"))


def test_get_refreshes_recency(cache_dir):
    cache = CacheManager(cache_dir, max_bytes=1024, clock=_ticking_clock())
    payload = _samples(15)
    cache.put("a", payload)
    cache.put("b", payload)
    cache.get("a")
    cache.put("c", payload)
    assert cache.contains("a")
    assert not cache.contains("b")


def test_oversized_entry_is_skipped(cache_dir):
    cache = CacheManager(cache_dir, max_bytes=64)
    assert not cache.put("big", _samples(50))
    assert cache.count == 0


def test_replacing_a_key_frees_its_bytes(cache_dir):
    cache = CacheManager(cache_dir)
    cache.put("key", _samples(20))
    cache.put("key", _samples(2))
    assert cache.count == 1
    assert cache.get("key") == _samples(2)


def test_clear(cache_dir):
    cache = CacheManager(cache_dir)
    cache.put("a", _samples(2))
    cache.put("b", _samples(2))
    cache.clear()
    assert cache.count == 0
    assert list(cache_dir.glob("*.cache")) == []


def test_missing_payload_dropped_on_load(cache_dir):
    cache = CacheManager(cache_dir)
    cache.put("a", _samples(2))
    (cache_dir / CacheManager.file_name_for("a")).unlink()
    assert CacheManager(cache_dir).count == 0


def test_corrupt_payload_is_a_miss(cache_dir):
    cache = CacheManager(cache_dir)
    cache.put("a", _samples(2))
    (cache_dir / CacheManager.file_name_for("a")).write_text("{not json")
    assert cache.get("a") is None
    assert not cache.contains("a")


@pytest.mark.parametrize(
    "index",
    ["[]", "42", '"entries"', '{"entries": []}', '{"entries": {"a": [1, 2]}}', '{"entries": {"a": {"x": 1}}}'],
)
def test_malformed_index_starts_empty(cache_dir, index):
    cache_dir.mkdir(parents=True, exist_ok=True)
    (cache_dir / INDEX_FILE).write_text(index)
    cache = CacheManager(cache_dir)
    assert cache.count == 0
    assert cache.put("a", _samples(3))
    assert len(cache.get("a")) == 3


def test_payload_with_wrong_shape_is_a_miss(cache_dir):
    cache = CacheManager(cache_dir)
    cache.put("a", _samples(2))
    (cache_dir / CacheManager.file_name_for("a")).write_text("[[1, 2]]")
    assert cache.get("a") is None


def test_unusable_directory_raises(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(CacheCreationFailedError):
        CacheManager(blocker / "cache")


def test_cache_key_ignores_pixels():
    key = make_cache_key(100, 80, 500, QualityPreset.HIGH, SamplingStrategy.advanced(SamplingAlgorithm.BLUE_NOISE))
    assert key == "samples_v1_100x80_500_high_advanced:blue_noise"
    assert key != make_cache_key(100, 80, 500, QualityPreset.HIGH, SamplingStrategy.hybrid())
