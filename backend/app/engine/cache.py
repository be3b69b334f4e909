"""CacheManager: size-bounded, LRU-evicted disk store of sample sets.

Layout under ``cache_dir``:
- cache_index.json          key -> {file_name, size_bytes, created_at, last_accessed}
- <sha256(key)>.cache       JSON list of [x, y, r, g, b, a] rows

The index is the single source of truth for what is on disk. Every read and
write of the index or payloads happens under one lock. I/O failures are
logged and reported as a miss / skipped store, never raised.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from pathlib import Path

from app.engine.config import QualityPreset, SamplingStrategy
from app.engine.errors import CacheCreationFailedError
from app.engine.sampling.base import Sample

_module_logger = logging.getLogger(__name__)

INDEX_FILE = "cache_index.json"
PAYLOAD_SUFFIX = ".cache"
DEFAULT_MAX_BYTES = 100 * 1024 * 1024
KEY_VERSION = "v1"


@dataclass
class CacheEntry:
    file_name: str
    size_bytes: int
    created_at: float
    last_accessed: float


def make_cache_key(
    width: int,
    height: int,
    target_count: int,
    quality_preset: QualityPreset,
    sampling_strategy: SamplingStrategy,
) -> str:
    """Key from request parameters only; pixel content is not part of it."""
    return f"samples_{KEY_VERSION}_{width}x{height}_{target_count}_{quality_preset.value}_{sampling_strategy.name}"


class CacheManager:
    def __init__(
        self,
        cache_dir: Path,
        max_bytes: int = DEFAULT_MAX_BYTES,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.max_bytes = max_bytes
        self._clock = clock
        self._log = logger or _module_logger
        self._lock = threading.RLock()
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheCreationFailedError(e) from e
        self._index_file = self.cache_dir / INDEX_FILE
        self._entries: dict[str, CacheEntry] = self._load_index()

    # --- Introspection ---

    @property
    def size_bytes(self) -> int:
        with self._lock:
            return sum(e.size_bytes for e in self._entries.values())

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    @staticmethod
    def file_name_for(key: str) -> str:
        return hashlib.sha256(key.encode()).hexdigest() + PAYLOAD_SUFFIX

    # --- Operations ---

    def get(self, key: str) -> list[Sample] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            path = self.cache_dir / entry.file_name
            try:
                with open(path, encoding="utf-8") as f:
                    rows = json.load(f)
                samples = [Sample.from_row(r) for r in rows]
            except (OSError, ValueError, TypeError) as e:
                self._log.warning("Dropping unreadable cache entry %s: %s", key, e)
                self._remove(key)
                self._save_index()
                return None

            entry.last_accessed = self._clock()
            self._save_index()
            self._log.debug("Cache hit %s (%d samples)", key, len(samples))
            return samples

    def put(self, key: str, samples: list[Sample]) -> bool:
        payload = json.dumps([s.to_row() for s in samples]).encode("utf-8")
        size = len(payload)
        if size > self.max_bytes:
            self._log.info("Not caching %s: %d bytes exceeds budget %d", key, size, self.max_bytes)
            return False

        with self._lock:
            if key in self._entries:
                self._remove(key)
            self._evict_for(size)

            file_name = self.file_name_for(key)
            try:
                (self.cache_dir / file_name).write_bytes(payload)
            except OSError as e:
                self._log.warning("Failed to write cache entry %s: %s", key, e)
                self._save_index()
                return False

            now = self._clock()
            self._entries[key] = CacheEntry(file_name, size, now, now)
            self._save_index()
            self._log.debug("Cached %s (%d bytes, total %d)", key, size, self.size_bytes)
            return True

    def clear(self) -> None:
        with self._lock:
            for key in list(self._entries):
                self._remove(key)
            self._save_index()
            self._log.info("Cache cleared")

    # --- Internals ---

    def _evict_for(self, incoming: int) -> None:
        total = sum(e.size_bytes for e in self._entries.values())
        if total + incoming <= self.max_bytes:
            return
        # Oldest access first; insertion order breaks ties
        for key, entry in sorted(self._entries.items(), key=lambda kv: kv[1].last_accessed):
            if total + incoming <= self.max_bytes:
                break
            total -= entry.size_bytes
            self._remove(key)
            self._log.info("Evicted cache entry %s (%d bytes)", key, entry.size_bytes)

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        try:
            (self.cache_dir / entry.file_name).unlink(missing_ok=True)
        except OSError as e:
            self._log.warning("Failed to delete cache file %s: %s", entry.file_name, e)

    def _load_index(self) -> dict[str, CacheEntry]:
        if not self._index_file.exists():
            return {}
        try:
            with open(self._index_file, encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, dict) or not isinstance(raw.get("entries", {}), dict):
                raise ValueError("index is not a JSON object of entries")
            entries = {k: CacheEntry(**v) for k, v in raw.get("entries", {}).items()}
        except (OSError, ValueError, TypeError) as e:
            self._log.warning("Failed to load cache index, starting empty: %s", e)
            return {}
        # Drop index entries whose payload vanished
        return {k: e for k, e in entries.items() if (self.cache_dir / e.file_name).exists()}

    def _save_index(self) -> None:
        data = {"version": 1, "entries": {k: asdict(e) for k, e in self._entries.items()}}
        try:
            with open(self._index_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            self._log.warning("Failed to save cache index: %s", e)
