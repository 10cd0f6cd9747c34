"""SafeScore Engine: Area data repository

Aggregates everything the scorer needs for one geocell: recent incidents,
recent community reports and static area attributes. Reads are issued
concurrently; any failure degrades to default data instead of failing.
"""

import asyncio
import logging
from datetime import datetime, timedelta

from pydantic import TypeAdapter, ValidationError

from safescore.config import (
    AREA_STATIC, COMMUNITY_REPORTS, INCIDENTS,
    INCIDENT_LIMIT, INCIDENT_WINDOW_DAYS,
    REPORT_LIMIT, REPORT_WINDOW_DAYS,
    REPOSITORY_TIMEOUT,
)
from safescore.errors import RepositoryError
from safescore.geocell import encode_coordinate
from safescore.models import (
    AreaData, AreaStaticAttributes, CommunityReport, Coordinate, IncidentRecord, ensure_utc,
)
from safescore.store import DocumentStore

logger = logging.getLogger("safescore.repository")


def default_area_data(cell: str, coord: Coordinate, now: datetime) -> AreaData:
    """AreaData used when the store cannot be read; scores built on it carry confidence 0."""
    return AreaData(
        geocell=cell,
        location=coord,
        incidents=[],
        community_reports=[],
        static=AreaStaticAttributes(),
        last_updated=now,
        degraded=True,
    )


def _parse_all(model, docs: list[dict], kind: str, cell: str) -> list:
    parsed = []
    for doc in docs:
        try:
            parsed.append(model.model_validate(doc))
        except ValidationError as e:
            logger.warning(f"Skipping malformed {kind} {doc.get('id', '?')} in {cell}: {e.error_count()} error(s)")
    return parsed


class AreaDataRepository:
    def __init__(self, store: DocumentStore, timeout: float = REPOSITORY_TIMEOUT):
        self._store = store
        self._timeout = timeout

    async def fetch_incidents(self, cell: str, now: datetime) -> list[IncidentRecord]:
        """Newest-first incidents of the last 180 days, capped at 100."""
        since = now - timedelta(days=INCIDENT_WINDOW_DAYS)
        docs = await self._store.query(
            INCIDENTS,
            where=[("geocell", "==", cell), ("occurred_at", ">=", since)],
            order_by="occurred_at",
            descending=True,
            limit=INCIDENT_LIMIT,
        )
        return _parse_all(IncidentRecord, docs, "incident", cell)

    async def fetch_reports(self, cell: str, now: datetime) -> list[CommunityReport]:
        """Newest-first community reports of the last 30 days, capped at 50."""
        since = now - timedelta(days=REPORT_WINDOW_DAYS)
        docs = await self._store.query(
            COMMUNITY_REPORTS,
            where=[("geocell", "==", cell), ("occurred_at", ">=", since)],
            order_by="occurred_at",
            descending=True,
            limit=REPORT_LIMIT,
        )
        return _parse_all(CommunityReport, docs, "community report", cell)

    async def fetch_static(self, cell: str) -> tuple[AreaStaticAttributes, datetime | None]:
        doc = await self._store.get(AREA_STATIC, cell)
        if not doc:
            return AreaStaticAttributes(), None
        # Absent or null fields fall back to defaults, explicit zeros are kept
        present = {k: v for k, v in doc.items() if v is not None}
        try:
            static = AreaStaticAttributes.model_validate(present)
        except ValidationError as e:
            raise RepositoryError(f"malformed area attributes for {cell}") from e
        last_updated = present.get("last_updated")
        if last_updated is not None:
            last_updated = ensure_utc(TypeAdapter(datetime).validate_python(last_updated))
        return static, last_updated

    async def fetch(self, coord: Coordinate, now: datetime) -> AreaData:
        """Build AreaData for the cell containing `coord`. Never raises for store failures."""
        cell = encode_coordinate(coord)

        try:
            results = await asyncio.wait_for(
                asyncio.gather(
                    self.fetch_incidents(cell, now),
                    self.fetch_reports(cell, now),
                    self.fetch_static(cell),
                    return_exceptions=True,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Area data fetch for {cell} timed out after {self._timeout}s, using defaults")
            return default_area_data(cell, coord, now)

        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            logger.warning(f"Area data fetch for {cell} failed ({failures[0]!r}), using defaults")
            return default_area_data(cell, coord, now)

        incidents, reports, (static, last_updated) = results
        return AreaData(
            geocell=cell,
            location=coord,
            incidents=incidents,
            community_reports=reports,
            static=static,
            last_updated=last_updated or now,
        )
