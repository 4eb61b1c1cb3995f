# yearephem/utils/cache.py
from __future__ import annotations
from collections import OrderedDict
import logging, threading
from typing import Callable, Hashable, List, Tuple

from yearephem.core.ephemeris_adapter import Location
from yearephem.utils.metrics import CACHE_EVICTIONS, CACHE_HITS, CACHE_MISSES, CACHE_SIZE

log = logging.getLogger(__name__)

CacheKey = Tuple[int, Location, float]

class YearResultCache:
    """
    Bounded map (year, location, sample interval) -> YearResult.

    Insertion-ordered: hits do not refresh an entry, the oldest insertion is
    evicted first, and nothing expires by age. Computation runs outside the
    lock; only insert/evict are serialized.
    """

    def __init__(self, capacity: int = 20):
        if int(capacity) < 1:
            raise ValueError("cache capacity must be >= 1")
        self.capacity = int(capacity)
        self.store: "OrderedDict[CacheKey, object]" = OrderedDict()
        self.lock = threading.Lock()

    @staticmethod
    def key(year: int, location: Location, sample_interval_hours: float) -> CacheKey:
        return (int(year), location, float(sample_interval_hours))

    def get(self, key: Hashable):
        with self.lock:
            return self.store.get(key)

    def put(self, key: Hashable, value):
        """Insert unless present; returns whichever value ends up stored."""
        with self.lock:
            existing = self.store.get(key)
            if existing is not None:
                return existing
            self.store[key] = value
            while len(self.store) > self.capacity:
                old, _ = self.store.popitem(last=False)
                CACHE_EVICTIONS.inc()
                log.debug("evicted year result %s", old)
            CACHE_SIZE.set(len(self.store))
            return value

    def get_or_compute(self, year: int, location: Location, sample_interval_hours: float,
                       compute: Callable[[], object]):
        """Returns (result, cached)."""
        k = self.key(year, location, sample_interval_hours)
        hit = self.get(k)
        if hit is not None:
            CACHE_HITS.inc()
            return hit, True
        CACHE_MISSES.inc()
        result = compute()
        stored = self.put(k, result)
        return stored, stored is not result

    def keys(self) -> List[CacheKey]:
        with self.lock:
            return list(self.store.keys())

    def discard(self, key: Hashable) -> bool:
        with self.lock:
            removed = self.store.pop(key, None) is not None
            CACHE_SIZE.set(len(self.store))
            return removed

    def clear(self) -> int:
        with self.lock:
            n = len(self.store)
            self.store.clear()
            CACHE_SIZE.set(0)
            return n

    def __len__(self) -> int:
        with self.lock:
            return len(self.store)

    def __contains__(self, key: Hashable) -> bool:
        with self.lock:
            return key in self.store
