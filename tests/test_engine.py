"""Tests for the scoring engine: cache flow, invalidation, degradation."""

import asyncio
from datetime import date, timedelta

import pytest

from safescore.cache import MemoryCacheBackend, ScoreCache
from safescore.config import INCIDENTS
from safescore.engine import ScoreEngine
from safescore.errors import InvalidCoordinateError, StoreError
from safescore.history import HistoryAggregator
from safescore.repository import AreaDataRepository
from safescore.store import MemoryDocumentStore
from conftest import CELL, COORD, LAT, LNG, NOW, make_incident


class CountingRepository(AreaDataRepository):
    def __init__(self, store, gate: asyncio.Event = None):
        super().__init__(store)
        self.calls = 0
        self.gate = gate
        self.fetched = asyncio.Event()

    async def fetch(self, coord, now):
        self.calls += 1
        area = await super().fetch(coord, now)
        self.fetched.set()
        if self.gate is not None:
            await self.gate.wait()
        return area


class DownStore(MemoryDocumentStore):
    async def get(self, collection, key):
        raise StoreError("unreachable")

    async def query(self, *args, **kwargs):
        raise StoreError("unreachable")


class BrokenHistory(HistoryAggregator):
    async def record(self, cell, timestamp, score):
        raise StoreError("history collection unavailable")


def _engine(store, repository=None, history=None, backend=None):
    return ScoreEngine(
        repository=repository or AreaDataRepository(store),
        cache=ScoreCache(backend or MemoryCacheBackend()),
        history=history or HistoryAggregator(store),
    )


@pytest.mark.asyncio
async def test_second_request_in_same_hour_is_a_cache_hit(store):
    repo = CountingRepository(store)
    engine = _engine(store, repository=repo)

    first = await engine.get_or_calculate_score(COORD, NOW)
    second = await engine.get_or_calculate_score(COORD, NOW + timedelta(minutes=40))

    assert repo.calls == 1
    assert second == first
    assert second.calculated_at == NOW
    await engine.aclose()


@pytest.mark.asyncio
async def test_different_hours_use_different_keys(store):
    repo = CountingRepository(store)
    engine = _engine(store, repository=repo)

    day = await engine.get_or_calculate_score(COORD, NOW)
    night = await engine.get_or_calculate_score(COORD, NOW.replace(hour=23))

    assert repo.calls == 2
    assert day.breakdown.time_of_day == 85
    assert night.breakdown.time_of_day == 30
    await engine.aclose()


@pytest.mark.asyncio
async def test_expired_entry_is_recomputed(store):
    repo = CountingRepository(store)
    engine = _engine(store, repository=repo)

    await engine.get_or_calculate_score(COORD, NOW)
    later = await engine.get_or_calculate_score(COORD, NOW + timedelta(days=1))

    assert repo.calls == 2
    assert later.calculated_at == NOW + timedelta(days=1)
    await engine.aclose()


@pytest.mark.asyncio
async def test_new_incident_forces_recomputation(store, engine, hooks):
    before = await engine.get_or_calculate_score(COORD, NOW)
    assert before.breakdown.historical_incidents == 100

    await hooks.record_incident("assault", NOW, LAT, LNG, reporter_id="user-9")
    after = await engine.get_or_calculate_score(COORD, NOW)

    assert after.breakdown.historical_incidents == 70
    assert after.overall < before.overall
    await engine.aclose()


@pytest.mark.asyncio
async def test_invalidate_then_score_misses_for_every_hour(store):
    repo = CountingRepository(store)
    engine = _engine(store, repository=repo)
    for hour in (3, 9, 14, 22):
        await engine.get_or_calculate_score(COORD, NOW.replace(hour=hour))

    await engine.on_report_recorded(CELL)
    for hour in (3, 9, 14, 22):
        await engine.get_or_calculate_score(COORD, NOW.replace(hour=hour))

    assert repo.calls == 8
    await engine.aclose()


@pytest.mark.asyncio
async def test_invalidation_during_computation_is_not_overwritten(store):
    gate = asyncio.Event()
    repo = CountingRepository(store, gate=gate)
    backend = MemoryCacheBackend()
    engine = _engine(store, repository=repo, backend=backend)

    pending = asyncio.create_task(engine.get_or_calculate_score(COORD, NOW))
    await repo.fetched.wait()
    incident = make_incident("assault")
    await store.set(INCIDENTS, incident.id, incident.model_dump())
    await engine.on_incident_recorded(CELL)
    gate.set()
    stale = await pending

    assert stale.breakdown.historical_incidents == 100
    assert len(backend) == 0

    fresh = await engine.get_or_calculate_score(COORD, NOW)
    assert fresh.breakdown.historical_incidents == 70
    await engine.aclose()


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_computation(store):
    gate = asyncio.Event()
    repo = CountingRepository(store, gate=gate)
    engine = _engine(store, repository=repo)

    tasks = [asyncio.create_task(engine.get_or_calculate_score(COORD, NOW)) for _ in range(5)]
    await asyncio.sleep(0)
    gate.set()
    results = await asyncio.gather(*tasks)

    assert repo.calls == 1
    assert all(r == results[0] for r in results)
    await engine.aclose()


@pytest.mark.asyncio
async def test_concurrent_misses_on_different_days_compute_separately(store):
    gate = asyncio.Event()
    repo = CountingRepository(store, gate=gate)
    engine = _engine(store, repository=repo)

    later = NOW + timedelta(days=3)
    today = asyncio.create_task(engine.get_or_calculate_score(COORD, NOW))
    other_day = asyncio.create_task(engine.get_or_calculate_score(COORD, later))
    await asyncio.sleep(0)
    gate.set()
    first, second = await asyncio.gather(today, other_day)

    assert repo.calls == 2
    assert first.calculated_at == NOW
    assert second.calculated_at == later
    await engine.aclose()


@pytest.mark.asyncio
async def test_naive_request_time_is_treated_as_utc(store):
    repo = CountingRepository(store)
    engine = _engine(store, repository=repo)

    first = await engine.get_or_calculate_score(COORD, NOW)
    second = await engine.get_or_calculate_score(COORD, NOW.replace(tzinfo=None, minute=10))

    assert repo.calls == 1
    assert second == first
    await engine.aclose()


@pytest.mark.asyncio
async def test_store_outage_serves_zero_confidence_default():
    engine = _engine(DownStore())
    score = await engine.get_or_calculate_score(COORD, NOW)

    assert score.confidence == 0
    assert score.overall == 89
    await engine.aclose()


@pytest.mark.asyncio
async def test_history_is_recorded_in_background(store, engine):
    await engine.get_or_calculate_score(COORD, NOW)
    await engine.get_or_calculate_score(COORD, NOW.replace(hour=2))
    await engine.wait_for_background()

    bucket = await engine.history.get(CELL, date(2024, 6, 1))
    assert bucket.hourly_scores == {2: 70, 14: 89}
    assert bucket.min_score == 70
    assert bucket.max_score == 89
    assert bucket.avg_score == pytest.approx(79.5)


@pytest.mark.asyncio
async def test_history_failure_does_not_fail_scoring(store):
    engine = _engine(store, history=BrokenHistory(store))
    score = await engine.get_or_calculate_score(COORD, NOW)
    await engine.wait_for_background()
    assert score.overall == 89


@pytest.mark.asyncio
async def test_invalid_coordinate_rejected_before_io(store):
    repo = CountingRepository(store)
    engine = _engine(store, repository=repo)

    with pytest.raises(InvalidCoordinateError):
        await engine.score_location(91.0, 0.0, NOW)
    with pytest.raises(InvalidCoordinateError):
        await engine.score_location(0.0, float("nan"), NOW)
    assert repo.calls == 0


@pytest.mark.asyncio
async def test_score_location_defaults_to_current_time(store, engine):
    score = await engine.score_location(LAT, LNG)
    assert score.geocell == CELL
    assert score.calculated_at.tzinfo is not None
    await engine.aclose()


@pytest.mark.asyncio
async def test_default_scores_are_not_cached():
    backend = MemoryCacheBackend()
    engine = _engine(DownStore(), backend=backend)
    await engine.get_or_calculate_score(COORD, NOW)
    await engine.wait_for_background()
    assert len(backend) == 0


@pytest.mark.asyncio
async def test_build_engine_wires_components(monkeypatch):
    from safescore import build_engine, config
    from safescore.cache import DocumentCacheBackend

    monkeypatch.setattr(config, "CACHE_BACKEND", "store")
    store = MemoryDocumentStore()
    engine, hooks = build_engine(store)

    await hooks.record_incident("harassment", NOW, LAT, LNG, reporter_id="user-3")
    score = await engine.get_or_calculate_score(COORD, NOW)
    await engine.aclose()

    assert isinstance(engine.cache._backend, DocumentCacheBackend)
    assert score.breakdown.historical_incidents == 90
    assert store.count("score_cache") == 1
    assert store.count("score_history") == 1


def test_build_engine_rejects_unknown_backend(monkeypatch):
    from safescore import build_engine, config

    monkeypatch.setattr(config, "CACHE_BACKEND", "redis")
    with pytest.raises(ValueError):
        build_engine(MemoryDocumentStore())
