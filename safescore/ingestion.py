"""SafeScore Engine: Ingestion hooks

Entry points for the incident/report submission flows. Each hook persists
its record and then invalidates the cached scores of the affected geocell
before returning, so the next score request for that cell is recomputed.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from safescore.config import AREA_STATIC, COMMUNITY_REPORTS, INCIDENTS
from safescore.engine import ScoreEngine
from safescore.errors import InvalidRecordError, RecordNotFoundError
from safescore.geocell import encode_coordinate
from safescore.models import (
    AreaStaticAttributes, CommunityReport, IncidentRecord, ensure_utc, validate_coordinate,
)
from safescore.store import DocumentStore

logger = logging.getLogger("safescore.ingestion")


class IngestionHooks:
    def __init__(self, store: DocumentStore, engine: ScoreEngine):
        self._store = store
        self._engine = engine

    async def record_incident(
        self,
        type: str,
        occurred_at: datetime,
        lat: float,
        lng: float,
        reporter_id: str,
        severity: float = 0.0,
        verified: bool = False,
        description: Optional[str] = None,
    ) -> IncidentRecord:
        location = validate_coordinate(lat, lng)
        cell = encode_coordinate(location)
        try:
            incident = IncidentRecord(
                id=str(uuid.uuid4()),
                type=type,
                occurred_at=occurred_at,
                location=location,
                severity=severity,
                verified=verified,
                reporter_id=reporter_id,
                geocell=cell,
                description=description,
            )
        except ValidationError as e:
            raise InvalidRecordError(f"invalid incident: {e}") from e

        await self._store.set(INCIDENTS, incident.id, incident.model_dump())
        await self._engine.on_incident_recorded(cell)
        logger.info(f"Incident {incident.id} ({incident.type}) recorded in {cell}")
        return incident

    async def record_report(
        self,
        rating: int,
        kind: str,
        occurred_at: datetime,
        lat: float,
        lng: float,
        reporter_id: str,
        comment: Optional[str] = None,
    ) -> CommunityReport:
        location = validate_coordinate(lat, lng)
        cell = encode_coordinate(location)
        try:
            report = CommunityReport(
                id=str(uuid.uuid4()),
                rating=rating,
                occurred_at=occurred_at,
                kind=kind,
                comment=comment,
                reporter_id=reporter_id,
                location=location,
                geocell=cell,
            )
        except ValidationError as e:
            raise InvalidRecordError(f"invalid community report: {e}") from e

        await self._store.set(COMMUNITY_REPORTS, report.id, report.model_dump())
        await self._engine.on_report_recorded(cell)
        logger.info(f"Community report {report.id} ({report.kind}, {report.rating}) recorded in {cell}")
        return report

    async def _load_incident(self, incident_id: str) -> IncidentRecord:
        doc = await self._store.get(INCIDENTS, incident_id)
        if doc is None:
            raise RecordNotFoundError(incident_id)
        return IncidentRecord.model_validate(doc)

    async def set_incident_verified(self, incident_id: str, verified: bool) -> IncidentRecord:
        """Moderation outcome. `verified` is the only mutable field of an incident."""
        incident = await self._load_incident(incident_id)
        if incident.verified == verified:
            return incident
        updated = incident.model_copy(update={"verified": verified})
        await self._store.set(INCIDENTS, incident_id, updated.model_dump())
        await self._engine.on_incident_recorded(updated.geocell)
        logger.info(f"Incident {incident_id} verified={verified}")
        return updated

    async def delete_incident(self, incident_id: str):
        incident = await self._load_incident(incident_id)
        await self._store.delete(INCIDENTS, incident_id)
        await self._engine.on_incident_recorded(incident.geocell)
        logger.info(f"Incident {incident_id} deleted from {incident.geocell}")

    async def set_area_attributes(self, cell: str, attributes: AreaStaticAttributes,
                                  updated_at: Optional[datetime] = None) -> None:
        doc = attributes.model_dump()
        doc["geocell"] = cell
        doc["last_updated"] = ensure_utc(updated_at) if updated_at else datetime.now(timezone.utc)
        await self._store.set(AREA_STATIC, cell, doc)
        await self._engine.invalidate(cell)
