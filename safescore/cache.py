"""SafeScore Engine: Score cache keyed by (geocell, hour-of-day)

Entries live for one hour from the request that created them. Expired
entries are not swept, they are ignored on read and overwritten on the
next miss. Invalidating a cell drops all 24 hour buckets and bumps the
cell's epoch so in-flight computations cannot write stale scores back.
"""

import itertools
import logging
from datetime import datetime, timedelta
from typing import Optional, Protocol

from cachetools import LRUCache
from pydantic import ValidationError

from safescore.config import CACHE_MAX_SIZE, EPOCH_TABLE_SIZE, SCORE_CACHE, SCORE_TTL_SECONDS
from safescore.errors import CacheStoreError, StoreError
from safescore.models import CacheEntry, SafetyScore
from safescore.store import DocumentStore

logger = logging.getLogger("safescore.cache")

HOURS = range(24)


def cache_key(cell: str, hour: int) -> str:
    return f"{cell}_{hour}"


class CacheBackend(Protocol):
    async def get(self, cell: str, hour: int, now: datetime) -> Optional[CacheEntry]: ...

    async def put(self, entry: CacheEntry, now: datetime) -> None: ...

    async def invalidate(self, cell: str) -> None: ...


# ─────────────────────────── Backends ───────────────────────────

class MemoryCacheBackend:
    """In-process cache with per-entry expiry and max-size eviction."""

    def __init__(self, max_size: int = CACHE_MAX_SIZE):
        self._store: dict[str, CacheEntry] = {}
        self._max_size = max_size

    async def get(self, cell: str, hour: int, now: datetime) -> Optional[CacheEntry]:
        entry = self._store.get(cache_key(cell, hour))
        if entry is None or now >= entry.expires_at:
            return None
        return entry

    async def put(self, entry: CacheEntry, now: datetime) -> None:
        key = cache_key(entry.geocell, entry.hour)
        # Enforce max size: drop expired entries, then earliest-expiring
        if len(self._store) >= self._max_size and key not in self._store:
            self.evict_expired(now)
            while len(self._store) >= self._max_size:
                oldest_key = min(self._store, key=lambda k: self._store[k].expires_at)
                del self._store[oldest_key]
        self._store[key] = entry

    async def invalidate(self, cell: str) -> None:
        for hour in HOURS:
            self._store.pop(cache_key(cell, hour), None)

    def evict_expired(self, now: datetime):
        expired = [k for k, e in self._store.items() if now >= e.expires_at]
        for k in expired:
            del self._store[k]

    def __len__(self):
        return len(self._store)


class DocumentCacheBackend:
    """Cache entries persisted in the `score_cache` collection."""

    def __init__(self, store: DocumentStore, collection: str = SCORE_CACHE):
        self._store = store
        self._collection = collection

    async def get(self, cell: str, hour: int, now: datetime) -> Optional[CacheEntry]:
        try:
            doc = await self._store.get(self._collection, cache_key(cell, hour))
            entry = CacheEntry.model_validate(doc) if doc else None
        except (StoreError, ValidationError) as e:
            raise CacheStoreError(f"cache read {cache_key(cell, hour)} failed: {e}") from e
        if entry is None or now >= entry.expires_at:
            return None
        return entry

    async def put(self, entry: CacheEntry, now: datetime) -> None:
        try:
            await self._store.set(self._collection, cache_key(entry.geocell, entry.hour), entry.model_dump())
        except StoreError as e:
            raise CacheStoreError(f"cache write {cache_key(entry.geocell, entry.hour)} failed: {e}") from e

    async def invalidate(self, cell: str) -> None:
        try:
            await self._store.delete_many(self._collection, [cache_key(cell, h) for h in HOURS])
        except StoreError as e:
            raise CacheStoreError(f"cache invalidation for {cell} failed: {e}") from e


# ─────────────────────────── Score cache ────────────────────────

class ScoreCache:
    """Engine-facing cache. Backend failures are logged and treated as misses."""

    def __init__(self, backend: CacheBackend, ttl_seconds: int = SCORE_TTL_SECONDS,
                 epoch_table_size: int = EPOCH_TABLE_SIZE):
        self._backend = backend
        self._ttl = timedelta(seconds=ttl_seconds)
        self._epochs: LRUCache = LRUCache(maxsize=epoch_table_size)
        self._counter = itertools.count(1)
        # Cells whose backend invalidation failed; never served from cache until it succeeds
        self._dirty: set[str] = set()

    def epoch(self, cell: str) -> int:
        return self._epochs.get(cell, 0)

    async def lookup(self, cell: str, hour: int, now: datetime) -> Optional[SafetyScore]:
        if cell in self._dirty:
            await self.invalidate(cell)
            if cell in self._dirty:
                return None
        try:
            entry = await self._backend.get(cell, hour, now)
        except CacheStoreError as e:
            logger.warning(f"Cache unavailable, computing directly: {e}")
            return None
        if entry is None:
            logger.debug(f"Cache miss {cache_key(cell, hour)}")
            return None
        logger.debug(f"Cache hit {cache_key(cell, hour)}")
        return entry.score

    async def store(self, cell: str, hour: int, score: SafetyScore, now: datetime, epoch: int) -> bool:
        """Write a freshly computed score back unless the cell was invalidated since `epoch`."""
        if cell in self._dirty:
            return False
        if self.epoch(cell) != epoch:
            logger.warning(f"Skipping write-back for {cache_key(cell, hour)}: cell invalidated mid-computation")
            return False
        entry = CacheEntry(geocell=cell, hour=hour, score=score, expires_at=now + self._ttl)
        try:
            await self._backend.put(entry, now)
        except CacheStoreError as e:
            logger.warning(f"Cache write failed: {e}")
            return False
        if self.epoch(cell) != epoch:
            # Invalidated while the write was in flight
            await self.invalidate(cell)
            return False
        return True

    async def invalidate(self, cell: str) -> None:
        # Bump before awaiting the backend
        self._epochs[cell] = next(self._counter)
        try:
            await self._backend.invalidate(cell)
        except CacheStoreError as e:
            logger.error(f"Cache invalidation for {cell} did not reach the backend: {e}")
            self._dirty.add(cell)
            return
        self._dirty.discard(cell)
        logger.info(f"Invalidated 24 cached hours for {cell}")
