"""Thread-safe in-memory LRU cache bounded by an estimated byte size.

Used by ``EmbeddingClient`` to keep query embeddings: the same handful of
directory and policy queries are embedded over and over within a session,
and each one is a remote inference call.

• **OrderedDict** for O(1) eviction and promotion.
• **Size estimate**: 8 bytes per float for numeric vectors, UTF-8 JSON length
  for anything else.
• Purely ephemeral; lost on restart.

>>> cache = LRUCache(max_bytes=4 * 1024 * 1024)
>>> cache.put("vacation days annual leave entitlement", [0.12, -0.03, ...])
>>> cache.get("vacation days annual leave entitlement")
[0.12, -0.03, ...]
"""

from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict
from typing import Any

logger = logging.getLogger(__name__)

# 4 MB holds roughly 2,700 384-dim vectors
DEFAULT_MAX_BYTES = 4 * 1024 * 1024


class LRUCache:
    """Least-Recently-Used cache bounded by total estimated byte size."""

    def __init__(self, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self._max_bytes = max_bytes
        self._current_bytes = 0
        # key → (value, estimated_size_bytes)
        self._store: OrderedDict[str, tuple[Any, int]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _estimate_bytes(value: Any) -> int:
        if isinstance(value, (list, tuple)) and all(isinstance(v, (int, float)) for v in value):
            return 8 * len(value)
        try:
            return len(json.dumps(value, default=str).encode("utf-8"))
        except (TypeError, ValueError, OverflowError):
            return len(str(value).encode("utf-8"))

    def get(self, key: str) -> Any | None:
        """Return the cached value (promoting it to MRU) or ``None``."""
        with self._lock:
            if key not in self._store:
                self.misses += 1
                return None
            self._store.move_to_end(key)
            self.hits += 1
            return self._store[key][0]

    def put(self, key: str, value: Any) -> None:
        """Insert or overwrite *key*, evicting LRU entries to make room."""
        size = self._estimate_bytes(value)
        if size > self._max_bytes:
            logger.debug("Cache: skipping key %r (size %d > max %d)", key[:40], size, self._max_bytes)
            return

        with self._lock:
            if key in self._store:
                _, old_size = self._store.pop(key)
                self._current_bytes -= old_size

            while self._current_bytes + size > self._max_bytes and self._store:
                evicted_key, (_, evicted_size) = self._store.popitem(last=False)
                self._current_bytes -= evicted_size
                logger.debug("Cache: evicted %r (%d bytes)", evicted_key[:40], evicted_size)

            self._store[key] = (value, size)
            self._current_bytes += size

    def invalidate(self, key: str) -> bool:
        with self._lock:
            if key not in self._store:
                return False
            _, size = self._store.pop(key)
            self._current_bytes -= size
            return True

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._current_bytes = 0

    @property
    def current_bytes(self) -> int:
        return self._current_bytes

    @property
    def entry_count(self) -> int:
        return len(self._store)

    def has(self, key: str) -> bool:
        """Check presence *without* promoting the entry."""
        return key in self._store
