"""In-process chunk cache for proxied PDF bytes.

Entries are keyed by (scope, url, range) and bounded both by total size and
by an absolute TTL. When space runs out the least frequently accessed entry
is evicted, the oldest access breaking ties.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, NamedTuple

from .metrics import CACHE_EVICTIONS

if TYPE_CHECKING:
    from collections.abc import Callable

    from .ranges import ByteRange

LOG = logging.getLogger("pdf_stream_proxy.cache")

GLOBAL_SCOPE = "global"
DEFAULT_MAX_SIZE_BYTES = 50 * 1024 * 1024
DEFAULT_TTL_SECONDS = 300.0


class CacheKey(NamedTuple):
    scope: str
    url: str
    start: int | None = None
    end: int | None = None

    @classmethod
    def for_request(
        cls, scope: str, url: str, byte_range: ByteRange | None = None
    ) -> CacheKey:
        if byte_range is None:
            return cls(scope, url)
        return cls(scope, url, byte_range.start, byte_range.end)

    @property
    def is_full(self) -> bool:
        return self.start is None

    def __str__(self) -> str:
        if self.is_full:
            return f"{self.scope}:{self.url}:full"
        return f"{self.scope}:{self.url}:{self.start}-{self.end}"


@dataclass
class CacheEntry:
    data: bytes
    inserted_at: float
    last_accessed_at: float
    access_count: int = 1

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class ChunkCache:
    """Size- and TTL-bounded byte cache shared by all proxy requests.

    Buffers are held as immutable ``bytes``; anything else handed to
    :meth:`set` is copied first, so callers can never alias cached data.
    """

    def __init__(
        self,
        max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._current_size = 0
        self._max_size = max_size_bytes
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def max_size_bytes(self) -> int:
        return self._max_size

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def current_size_bytes(self) -> int:
        with self._lock:
            return self._current_size

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def get(self, key: CacheKey) -> bytes | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            now = self._clock()
            if now - entry.inserted_at > self._ttl:
                self._remove(key)
                CACHE_EVICTIONS.labels(reason="expired").inc()
                LOG.debug("expired %s", key)
                return None
            entry.access_count += 1
            entry.last_accessed_at = now
            return entry.data

    def set(self, key: CacheKey, data: bytes | bytearray | memoryview) -> None:
        buffer = data if type(data) is bytes else bytes(data)
        size = len(buffer)
        with self._lock:
            if key in self._entries:
                self._remove(key)

            while self._entries and self._current_size + size > self._max_size:
                self._evict_one()

            if size > self._max_size:
                LOG.debug(
                    "caching oversized chunk %s (%d bytes, max=%d)",
                    key,
                    size,
                    self._max_size,
                )

            now = self._clock()
            self._entries[key] = CacheEntry(
                data=buffer, inserted_at=now, last_accessed_at=now
            )
            self._current_size += size

    def delete(self, key: CacheKey) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            self._remove(key)
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._current_size = 0

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "memoryUsage": self._current_size,
                "maxSize": self._max_size,
            }

    def _remove(self, key: CacheKey) -> None:
        entry = self._entries.pop(key)
        self._current_size -= entry.size_bytes

    def _evict_one(self) -> None:
        # first minimum in insertion order wins a full tie
        victim_key = min(
            self._entries,
            key=lambda k: (
                self._entries[k].access_count,
                self._entries[k].last_accessed_at,
            ),
        )
        victim = self._entries[victim_key]
        self._remove(victim_key)
        CACHE_EVICTIONS.labels(reason="capacity").inc()
        LOG.debug(
            "evicted %s (accesses=%d, %d bytes)",
            victim_key,
            victim.access_count,
            victim.size_bytes,
        )
