# services/cache_stats.py
from collections import Counter
from typing import Dict, Any

HIT = "hits"
MISS = "misses"
JOIN = "joins"
PERSISTENT_HIT = "persistent_hits"
FAILURE = "failures"
EVICTION = "evictions"


class CacheStats:
    def __init__(self):
        self._counts: Counter = Counter()

    def record(self, kind: str, n: int = 1) -> None:
        self._counts[kind] += n

    def snapshot(self) -> Dict[str, Any]:
        # joins and persistent loads count as hits: no new computation ran
        served = self._counts[HIT] + self._counts[JOIN] + self._counts[PERSISTENT_HIT]
        misses = self._counts[MISS]
        return {
            HIT: self._counts[HIT],
            MISS: misses,
            JOIN: self._counts[JOIN],
            PERSISTENT_HIT: self._counts[PERSISTENT_HIT],
            FAILURE: self._counts[FAILURE],
            EVICTION: self._counts[EVICTION],
            "hit_ratio": round((served / max(1, served + misses)) * 100, 2),
        }
