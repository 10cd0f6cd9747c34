"""Pytest fixtures for testing."""

from datetime import datetime, timedelta, timezone

import pytest

from safescore.cache import MemoryCacheBackend, ScoreCache
from safescore.engine import ScoreEngine
from safescore.geocell import encode
from safescore.history import HistoryAggregator
from safescore.ingestion import IngestionHooks
from safescore.models import (
    AreaData, AreaStaticAttributes, CommunityReport, Coordinate, IncidentRecord,
)
from safescore.repository import AreaDataRepository
from safescore.store import MemoryDocumentStore

# Lower Manhattan
LAT, LNG = 40.7128, -74.0060
CELL = encode(LAT, LNG)
NOW = datetime(2024, 6, 1, 14, 0, tzinfo=timezone.utc)
COORD = Coordinate(lat=LAT, lng=LNG)


def make_incident(type: str = "theft", age: timedelta = timedelta(0), verified: bool = False,
                  now: datetime = NOW, **kwargs) -> IncidentRecord:
    """Helper function to create an incident in CELL."""
    return IncidentRecord(
        id=kwargs.get("id", f"inc-{type}-{int(age.total_seconds())}"),
        type=type,
        occurred_at=now - age,
        location=Coordinate(lat=LAT, lng=LNG),
        severity=kwargs.get("severity", 1.0),
        verified=verified,
        reporter_id=kwargs.get("reporter_id", "user-1"),
        geocell=CELL,
    )


def make_report(rating: int = 4, kind: str = "safe", age: timedelta = timedelta(0),
                now: datetime = NOW, **kwargs) -> CommunityReport:
    return CommunityReport(
        id=kwargs.get("id", f"rep-{kind}-{rating}-{int(age.total_seconds())}"),
        rating=rating,
        occurred_at=now - age,
        kind=kind,
        reporter_id=kwargs.get("reporter_id", "user-2"),
        location=Coordinate(lat=LAT, lng=LNG),
        geocell=CELL,
    )


def make_area(incidents=(), reports=(), static: AreaStaticAttributes = None, degraded: bool = False) -> AreaData:
    return AreaData(
        geocell=CELL,
        location=Coordinate(lat=LAT, lng=LNG),
        incidents=list(incidents),
        community_reports=list(reports),
        static=static or AreaStaticAttributes(),
        last_updated=NOW,
        degraded=degraded,
    )


@pytest.fixture
def coord():
    return Coordinate(lat=LAT, lng=LNG)


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def cache_backend():
    return MemoryCacheBackend()


@pytest.fixture
def engine(store, cache_backend):
    return ScoreEngine(
        repository=AreaDataRepository(store),
        cache=ScoreCache(cache_backend),
        history=HistoryAggregator(store),
    )


@pytest.fixture
def hooks(store, engine):
    return IngestionHooks(store, engine)
