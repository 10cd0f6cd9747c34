"""SafeScore Engine: Scoring entry point

Request flow:
  cache lookup (geocell, hour) -> hit: return stored score unchanged
                               -> miss: repository fetch -> score
                                        -> cache write-back -> history (background)
"""

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Callable, Optional

from safescore.cache import ScoreCache
from safescore.geocell import encode_coordinate
from safescore.history import HistoryAggregator
from safescore.models import AreaData, Coordinate, SafetyScore, ensure_utc, validate_coordinate
from safescore.repository import AreaDataRepository
from safescore.scoring import compute_safety_score

logger = logging.getLogger("safescore.engine")

Scorer = Callable[[Coordinate, datetime, AreaData], SafetyScore]


class ScoreEngine:
    def __init__(
        self,
        repository: AreaDataRepository,
        cache: ScoreCache,
        history: HistoryAggregator,
        scorer: Scorer = compute_safety_score,
    ):
        self.repository = repository
        self.cache = cache
        self.history = history
        self._scorer = scorer
        # (cell, hour, epoch) -> computation shared by concurrent misses
        self._inflight: dict[tuple[str, date, int, int], asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()

    async def get_or_calculate_score(self, coord: Coordinate, now: Optional[datetime] = None) -> SafetyScore:
        """Serve a cached score for (geocell, hour) or compute and cache a fresh one.

        A cached score is returned exactly as first computed, so its
        `calculated_at` may be earlier than `now`.
        """
        now = datetime.now(timezone.utc) if now is None else ensure_utc(now)
        cell = encode_coordinate(coord)
        hour = now.hour

        cached = await self.cache.lookup(cell, hour, now)
        if cached is not None:
            return cached

        epoch = self.cache.epoch(cell)
        key = (cell, now.date(), hour, epoch)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._compute(coord, cell, hour, now, epoch))
            self._inflight[key] = task
            task.add_done_callback(lambda _t: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def score_location(self, lat: float, lng: float, now: Optional[datetime] = None) -> SafetyScore:
        """Validate a raw latitude/longitude pair, then score it."""
        return await self.get_or_calculate_score(validate_coordinate(lat, lng), now)

    async def _compute(self, coord: Coordinate, cell: str, hour: int, now: datetime, epoch: int) -> SafetyScore:
        area = await self.repository.fetch(coord, now)
        score = self._scorer(coord, now, area)
        if area.degraded:
            # Defaults are neither cached nor kept as history
            logger.warning(f"Served default score {score.overall} for {cell} (confidence 0)")
            return score
        await self.cache.store(cell, hour, score, now, epoch)
        self._schedule_history(cell, now, score.overall)
        return score

    # ─────────────────────────── History ────────────────────────────

    def _schedule_history(self, cell: str, now: datetime, overall: int):
        task = asyncio.create_task(self._record_history(cell, now, overall))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _record_history(self, cell: str, now: datetime, overall: int):
        try:
            await self.history.record(cell, now, overall)
        except Exception as e:
            logger.warning(f"History update for {cell} failed (score unaffected): {e}")

    async def wait_for_background(self):
        """Wait until every scheduled history write has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ─────────────────────────── Invalidation ───────────────────────

    async def invalidate(self, cell: str):
        await self.cache.invalidate(cell)

    async def on_incident_recorded(self, cell: str):
        """Call after an incident in `cell` has been durably persisted."""
        await self.invalidate(cell)

    async def on_report_recorded(self, cell: str):
        """Call after a community report in `cell` has been durably persisted."""
        await self.invalidate(cell)

    async def aclose(self):
        await self.wait_for_background()
