"""Pairwise result cache keyed by employee identity and record version.

A new record version changes the key, so stale entries are never read; they
age out once the cache reaches ``max_entries``.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Generic, TypeVar

from dualwatch.models import EmployeeKey, EmployeeProfile, canonical_pair

V = TypeVar("V")

CacheKey = tuple[EmployeeKey, int, EmployeeKey, int]


def pair_cache_key(a: EmployeeProfile, b: EmployeeProfile) -> CacheKey:
    """``(employee1, version1, employee2, version2)`` in canonical order."""
    versions = {a.key: a.version, b.key: b.version}
    first, second = canonical_pair(a.key, b.key)
    return (first, versions[first], second, versions[second])


class PairCache(Generic[V]):
    """Thread-safe LRU map. Concurrent writes of one key: last writer wins."""

    def __init__(self, max_entries: int = 1_000_000) -> None:
        self.max_entries = max_entries
        self._data: OrderedDict[CacheKey, V] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: CacheKey) -> V | None:
        with self._lock:
            value = self._data.get(key)
            if value is None:
                self.misses += 1
                return None
            self._data.move_to_end(key)
            self.hits += 1
            return value

    def put(self, key: CacheKey, value: V) -> None:
        with self._lock:
            self._data[key] = value
            self._data.move_to_end(key)
            while len(self._data) > self.max_entries:
                self._data.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    @property
    def hit_rate(self) -> float:
        with self._lock:
            total = self.hits + self.misses
            return self.hits / total if total else 0.0
