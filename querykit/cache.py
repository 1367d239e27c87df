"""
Bounded stop-when-full map.

Used for the compiled-query cache (one per builder family) and for each
driver's escaped-identifier cache. Once ``max_size`` entries are stored,
further inserts are ignored; existing entries are never evicted because
their values are a pure function of their keys.
"""

from __future__ import annotations

from typing import Any, Dict, Hashable, Optional

__all__ = ["BoundedCache"]


class BoundedCache:
    """Fixed-capacity cache with hit/miss counters and no eviction."""

    def __init__(self, max_size: int = 50):
        if max_size < 0:
            raise ValueError("max_size must not be negative")
        self.max_size = max_size
        self._data: Dict[Hashable, Any] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable, default: Optional[Any] = None) -> Any:
        try:
            value = self._data[key]
        except KeyError:
            self.misses += 1
            return default
        self.hits += 1
        return value

    def put(self, key: Hashable, value: Any) -> bool:
        """Store ``value``; returns False when the cache is full or disabled."""
        if key in self._data:
            self._data[key] = value
            return True
        if len(self._data) >= self.max_size:
            return False
        self._data[key] = value
        return True

    @property
    def is_full(self) -> bool:
        return len(self._data) >= self.max_size

    def clear(self) -> None:
        self._data.clear()
        self.hits = 0
        self.misses = 0

    def stats(self) -> Dict[str, int]:
        return {
            "size": len(self._data),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
        }

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._data

    def __repr__(self) -> str:
        return f"BoundedCache(size={len(self._data)}, max_size={self.max_size})"
