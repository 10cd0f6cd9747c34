"""SafeScore Engine: Pydantic Models"""

from datetime import date, datetime, timezone
from typing import Literal, Optional

from pydantic import AwareDatetime, BaseModel, Field, ValidationError

from safescore.config import STATIC_DEFAULTS
from safescore.errors import InvalidCoordinateError

IncidentKind = Literal["harassment", "assault", "theft", "other"]
ReportKind = Literal["safe", "unsafe", "alert"]
SafetyLevel = Literal["Very Safe", "Safe", "Moderate", "Unsafe", "Very Unsafe"]


class Coordinate(BaseModel):
    lat: float = Field(ge=-90, le=90, allow_inf_nan=False)
    lng: float = Field(ge=-180, le=180, allow_inf_nan=False)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def validate_coordinate(lat: float, lng: float) -> Coordinate:
    """Build a Coordinate, raising InvalidCoordinateError for out-of-range input."""
    try:
        return Coordinate(lat=lat, lng=lng)
    except ValidationError as e:
        raise InvalidCoordinateError(f"invalid coordinate ({lat}, {lng}): {e.error_count()} error(s)") from e


class IncidentRecord(BaseModel):
    id: str
    type: IncidentKind
    occurred_at: AwareDatetime
    location: Coordinate
    severity: float = 0.0
    verified: bool = False
    reporter_id: str
    geocell: str = ""
    description: Optional[str] = None


class CommunityReport(BaseModel):
    id: str
    rating: int = Field(ge=1, le=5)
    occurred_at: AwareDatetime
    kind: ReportKind
    comment: Optional[str] = None
    reporter_id: str
    location: Coordinate
    geocell: str = ""


class AreaStaticAttributes(BaseModel):
    population_density: float = STATIC_DEFAULTS["population_density"]          # people / km²
    street_light_coverage: float = STATIC_DEFAULTS["street_light_coverage"]    # 0-100 %
    police_station_distance_km: float = STATIC_DEFAULTS["police_station_distance_km"]
    police_patrol_frequency: float = STATIC_DEFAULTS["police_patrol_frequency"]  # visits / week
    avg_police_response_minutes: float = STATIC_DEFAULTS["avg_police_response_minutes"]


class AreaData(BaseModel):
    geocell: str
    location: Coordinate
    incidents: list[IncidentRecord] = []
    community_reports: list[CommunityReport] = []
    static: AreaStaticAttributes = AreaStaticAttributes()
    last_updated: AwareDatetime
    degraded: bool = False  # built from defaults after a repository failure


class ScoreBreakdown(BaseModel):
    time_of_day: int = Field(ge=0, le=100)
    historical_incidents: int = Field(ge=0, le=100)
    population_density: int = Field(ge=0, le=100)
    lighting: int = Field(ge=0, le=100)
    police_presence: int = Field(ge=0, le=100)
    community_reports: int = Field(ge=0, le=100)


class SafetyScore(BaseModel):
    overall: int = Field(ge=0, le=100)
    breakdown: ScoreBreakdown
    confidence: int = Field(ge=0, le=100)
    level: SafetyLevel
    color: str
    geocell: str
    calculated_at: AwareDatetime


class CacheEntry(BaseModel):
    geocell: str
    hour: int = Field(ge=0, le=23)
    score: SafetyScore
    expires_at: AwareDatetime


class HistoryBucket(BaseModel):
    geocell: str
    day: date
    hourly_scores: dict[int, int] = {}
    avg_score: float
    min_score: int
    max_score: int
