"""Read-after-write consistency for repair read surfaces.

Three surfaces are cached per process: the detail view keyed by internal id,
the detail view keyed by human repair id, and the dashboard aggregate. Every
mutation calls ``RepairViews.invalidate`` after it commits, so the next read
through any surface reloads from the store. Loads bypass the session identity
map (``populate_existing``) and a per-key generation counter stops a read that
started before an invalidation from re-caching the old state.

Entries also expire after ``ttl`` seconds, which bounds staleness between
worker processes that do not share this cache.
"""
from __future__ import annotations
import logging
import threading
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple
from repair_tracker.constants.statuses import RepairStatus
from repair_tracker.errors import NotFoundError
from repair_tracker.services.serializers import repair_json, iso

logger = logging.getLogger(__name__)

DASHBOARD_KEY = 'dashboard:stats'
DAILY_WINDOW_DAYS = 30


def detail_key(repair_pk) -> str:
    return f"repair:id:{repair_pk}"


def human_key(repair_id) -> str:
    return f"repair:rid:{repair_id}"


class ViewCache:
    def __init__(self, ttl: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._lock = threading.Lock()
        self._data: Dict[Hashable, Tuple[float, Any]] = {}
        self._generations: Dict[Hashable, int] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key):
        with self._lock:
            item = self._data.get(key)
            if item is None:
                self.misses += 1
                return None
            stored_at, value = item
            if self.ttl and self.clock() - stored_at > self.ttl:
                del self._data[key]
                self.misses += 1
                return None
            self.hits += 1
            return value

    def generation(self, key) -> int:
        with self._lock:
            return self._generations.get(key, 0)

    def set(self, key, value, generation: Optional[int] = None) -> bool:
        """Store value unless key was invalidated after ``generation`` was read."""
        with self._lock:
            if generation is not None and self._generations.get(key, 0) != generation:
                return False
            self._data[key] = (self.clock(), value)
            return True

    def delete(self, key):
        with self._lock:
            self._data.pop(key, None)
            self._generations[key] = self._generations.get(key, 0) + 1

    def get_or_load(self, key, loader: Callable[[], Any]):
        cached = self.get(key)
        if cached is not None:
            return cached
        gen = self.generation(key)
        value = loader()
        self.set(key, value, generation=gen)
        return value

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._data

    def clear(self):
        with self._lock:
            for key in list(self._data):
                self._generations[key] = self._generations.get(key, 0) + 1
            self._data.clear()


def compute_dashboard_stats(store, now: datetime) -> Dict[str, Any]:
    rank = {s.value: i for i, s in enumerate(RepairStatus)}
    counts = sorted(store.status_counts(), key=lambda row: (rank.get(row[0], len(rank)), row[0]))
    status_counts = [{'status': status, 'count': count} for status, count in counts if count > 0]
    per_day: Counter = Counter()
    for created in store.creation_times():
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        per_day[created.astimezone(timezone.utc).date().isoformat()] += 1
    days = sorted(per_day)[-DAILY_WINDOW_DAYS:]
    return {
        'statusCounts': status_counts,
        'dailyCounts': [{'date': d, 'count': per_day[d]} for d in days],
        'total': sum(row['count'] for row in status_counts),
        'timestamp': iso(now),
    }


class RepairViews:
    def __init__(self, cache: Optional[ViewCache] = None):
        self.cache = cache or ViewCache()

    def repair_detail(self, store, repair_pk: int) -> Dict[str, Any]:
        def load():
            repair = store.get_repair(repair_pk, fresh=True)
            if repair is None:
                raise NotFoundError('Repair', repair_pk)
            return repair_json(repair)
        return self.cache.get_or_load(detail_key(repair_pk), load)

    def repair_detail_by_human_id(self, store, repair_id: str) -> Dict[str, Any]:
        def load():
            repair = store.find_repair_by_human_id(repair_id, fresh=True)
            if repair is None:
                raise NotFoundError('Repair', repair_id)
            return repair_json(repair)
        return self.cache.get_or_load(human_key(repair_id), load)

    def dashboard_stats(self, store, now: datetime) -> Dict[str, Any]:
        return self.cache.get_or_load(DASHBOARD_KEY, lambda: compute_dashboard_stats(store, now))

    def invalidate(self, repair_pk=None, human_repair_id=None) -> List[str]:
        """Drop the detail views for one repair plus the dashboard aggregate.

        Idempotent. Never raises: the mutation that triggered it has already
        committed.
        """
        keys = [DASHBOARD_KEY]
        if repair_pk is not None:
            keys.append(detail_key(repair_pk))
        if human_repair_id:
            keys.append(human_key(human_repair_id))
        dropped = []
        for key in keys:
            try:
                self.cache.delete(key)
                dropped.append(key)
            except Exception:
                logger.exception('Failed to invalidate view %s', key)
        logger.debug('Invalidated views %s', dropped)
        return dropped


def get_dashboard_stats(views: RepairViews, store, now: datetime) -> Dict[str, Any]:
    """Aggregate served from the view cache; per-client rate limiting is applied by the route."""
    return views.dashboard_stats(store, now)


__all__ = [
    'ViewCache', 'RepairViews', 'compute_dashboard_stats', 'get_dashboard_stats',
    'detail_key', 'human_key', 'DASHBOARD_KEY',
]
