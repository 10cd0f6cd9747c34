"""SafeScore Engine

Time-varying 0-100 safety scores per geocell, built from incident reports,
community reports and static area attributes, with an hour-granular cache
that is invalidated whenever new records land in a cell.
"""

from typing import Optional

from safescore import config
from safescore.cache import DocumentCacheBackend, MemoryCacheBackend, ScoreCache
from safescore.engine import ScoreEngine
from safescore.history import HistoryAggregator
from safescore.ingestion import IngestionHooks
from safescore.models import (
    AreaData, AreaStaticAttributes, CommunityReport, Coordinate,
    HistoryBucket, IncidentRecord, SafetyScore, ScoreBreakdown,
)
from safescore.repository import AreaDataRepository
from safescore.store import DocumentStore, HttpDocumentStore, MemoryDocumentStore

__version__ = "1.0.0"


def build_engine(store: Optional[DocumentStore] = None) -> tuple[ScoreEngine, IngestionHooks]:
    """Wire store, repository, cache and history from `config`."""
    if store is None:
        store = HttpDocumentStore(config.STORE_URL) if config.STORE_URL else MemoryDocumentStore()

    if config.CACHE_BACKEND == "store":
        backend = DocumentCacheBackend(store)
    elif config.CACHE_BACKEND == "memory":
        backend = MemoryCacheBackend()
    else:
        raise ValueError(f"unknown SAFESCORE_CACHE_BACKEND {config.CACHE_BACKEND!r}")

    engine = ScoreEngine(
        repository=AreaDataRepository(store),
        cache=ScoreCache(backend),
        history=HistoryAggregator(store),
    )
    return engine, IngestionHooks(store, engine)


__all__ = [
    "AreaData", "AreaDataRepository", "AreaStaticAttributes", "CommunityReport",
    "Coordinate", "DocumentStore", "HistoryAggregator", "HistoryBucket",
    "HttpDocumentStore", "IncidentRecord", "IngestionHooks", "MemoryDocumentStore",
    "SafetyScore", "ScoreBreakdown", "ScoreCache", "ScoreEngine", "build_engine",
]
