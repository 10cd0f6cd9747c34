"""SafeScore Engine: Per-day score history

One bucket per (geocell, calendar day) holding the latest score seen for
each hour plus running avg/min/max. Buckets are merged, never deleted.
"""

import asyncio
import logging
import weakref
from datetime import date, datetime
from typing import Optional

from safescore.config import SCORE_HISTORY
from safescore.models import HistoryBucket
from safescore.store import DocumentStore

logger = logging.getLogger("safescore.history")


def history_key(cell: str, day: date) -> str:
    return f"{cell}_{day.isoformat()}"


def merge_score(bucket: Optional[HistoryBucket], cell: str, day: date, hour: int, score: int) -> HistoryBucket:
    """Return `bucket` with hour `hour` set to `score` and the aggregates recomputed."""
    hourly = dict(bucket.hourly_scores) if bucket else {}
    hourly[hour] = score
    values = list(hourly.values())
    return HistoryBucket(
        geocell=cell,
        day=day,
        hourly_scores=dict(sorted(hourly.items())),
        avg_score=sum(values) / len(values),
        min_score=min(values),
        max_score=max(values),
    )


class HistoryAggregator:
    def __init__(self, store: DocumentStore, collection: str = SCORE_HISTORY):
        self._store = store
        self._collection = collection
        # One lock per bucket while writers hold it, so read-merge-write never interleaves
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def record(self, cell: str, timestamp: datetime, score: int) -> HistoryBucket:
        day = timestamp.date()
        key = history_key(cell, day)
        lock = self._lock_for(key)
        async with lock:
            doc = await self._store.get(self._collection, key)
            existing = HistoryBucket.model_validate(doc) if doc else None
            bucket = merge_score(existing, cell, day, timestamp.hour, score)
            await self._store.set(self._collection, key, bucket.model_dump())
        logger.debug(f"History {key}: hour {timestamp.hour} = {score}, avg {bucket.avg_score:.1f}")
        return bucket

    async def get(self, cell: str, day: date) -> Optional[HistoryBucket]:
        doc = await self._store.get(self._collection, history_key(cell, day))
        return HistoryBucket.model_validate(doc) if doc else None

    async def get_range(self, cell: str, start: date, end: date) -> list[HistoryBucket]:
        """Buckets for `cell` with start <= day <= end, oldest first."""
        docs = await self._store.query(
            self._collection,
            where=[("geocell", "==", cell), ("day", ">=", start), ("day", "<=", end)],
            order_by="day",
        )
        return [HistoryBucket.model_validate(d) for d in docs]
