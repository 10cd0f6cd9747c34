"""SafeScore Engine: Safety Scoring Logic

Pure, deterministic scoring of one geocell at one moment. Six factor
scores on a 0-100 scale are combined with fixed weights:

    time of day            20%
    historical incidents   30%   (exponential decay, 30-day constant)
    population density     15%
    street lighting        15%
    police presence        10%
    community reports      10%   (exponential decay, 7-day constant)

Confidence is an additive point scale describing how much real data
backed the score. It is not a probability.
"""

import math
from datetime import datetime, timedelta

import numpy as np

from safescore.config import (
    EMPTY_COMMUNITY_SCORE, FACTOR_WEIGHTS,
    INCIDENT_DECAY_DAYS, INCIDENT_PENALTY_SCALE, INCIDENT_WINDOW_DAYS,
    REPORT_DECAY_DAYS, REPORT_WINDOW_DAYS,
    SAFETY_LEVELS, SEVERITY_WEIGHTS, VERIFIED_MULTIPLIER,
)
from safescore.models import (
    AreaData, CommunityReport, Coordinate, IncidentRecord, SafetyScore, ScoreBreakdown,
)


def check_weights(weights: dict[str, int]) -> None:
    if sum(weights.values()) != 100:
        raise ValueError(f"factor weights must sum to 100, got {sum(weights.values())}")


check_weights(FACTOR_WEIGHTS)

_INCIDENT_DECAY_SECONDS = INCIDENT_DECAY_DAYS * 86400
_REPORT_DECAY_SECONDS = REPORT_DECAY_DAYS * 86400

# Police presence blend in tenths: distance 0.4, patrols 0.3, response 0.3
_POLICE_BLEND = (4, 3, 3)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _ages_seconds(timestamps: list[datetime], now: datetime) -> np.ndarray:
    # Records dated after `now` count as brand new
    return np.array([max((now - ts).total_seconds(), 0.0) for ts in timestamps], dtype=np.float64)


# ─────────────────────────── Factor scores ──────────────────────

def time_of_day_score(hour: int) -> float:
    if 8 <= hour < 18:
        return 85.0
    if 5 <= hour < 8:
        return 60.0
    if 18 <= hour < 21:
        return 55.0
    return 30.0


def incident_score(incidents: list[IncidentRecord], now: datetime) -> float:
    """Start at 100 and subtract a decayed, severity-weighted penalty per incident."""
    since = now - timedelta(days=INCIDENT_WINDOW_DAYS)
    recent = [i for i in incidents if i.occurred_at >= since]
    if not recent:
        return 100.0

    ages = _ages_seconds([i.occurred_at for i in recent], now)
    severity = np.array([SEVERITY_WEIGHTS.get(i.type, 1.0) for i in recent])
    verified = np.array([VERIFIED_MULTIPLIER if i.verified else 1.0 for i in recent])

    weight = float(np.sum(severity * np.exp(-ages / _INCIDENT_DECAY_SECONDS) * verified))
    return max(0.0, 100.0 - weight * INCIDENT_PENALTY_SCALE)


def population_density_score(density: float, hour: int) -> float:
    daytime = 8 <= hour < 18
    if 1000 <= density <= 5000:
        return 90.0 if daytime else 70.0
    if 500 <= density < 1000:
        return 80.0 if daytime else 60.0
    if 5000 <= density < 10000:
        return 85.0 if daytime else 65.0
    if density < 500:
        return 60.0 if daytime else 30.0
    return 75.0 if daytime else 55.0


def lighting_score(coverage: float, hour: int) -> float:
    # Daylight makes street lighting irrelevant
    if 6 <= hour < 19:
        return 95.0
    return float(np.clip(coverage, 0.0, 100.0))


def police_score(distance_km: float, patrols_per_week: float, avg_response_minutes: float) -> float:
    if distance_km > 5:
        distance = 50
    elif distance_km > 2:
        distance = 70
    elif distance_km > 1:
        distance = 85
    else:
        distance = 100

    patrols = min(100.0, max(0.0, patrols_per_week * 10))

    if avg_response_minutes > 20:
        response = 40
    elif avg_response_minutes > 10:
        response = 70
    elif avg_response_minutes > 5:
        response = 85
    else:
        response = 100

    w_dist, w_patrol, w_resp = _POLICE_BLEND
    return (distance * w_dist + patrols * w_patrol + response * w_resp) / 10


def _normalize_report(report: CommunityReport) -> float:
    if report.kind == "safe":
        return report.rating * 20.0
    if report.kind == "unsafe":
        return 100.0 - report.rating * 20.0
    return 20.0  # alert


def community_score(reports: list[CommunityReport], now: datetime) -> float:
    """Recency-weighted mean of normalized report ratings, 70 when there is nothing recent."""
    since = now - timedelta(days=REPORT_WINDOW_DAYS)
    recent = [r for r in reports if r.occurred_at > since]
    if not recent:
        return EMPTY_COMMUNITY_SCORE

    ages = _ages_seconds([r.occurred_at for r in recent], now)
    weights = np.exp(-ages / _REPORT_DECAY_SECONDS)
    total = float(np.sum(weights))
    if total <= 0:
        return EMPTY_COMMUNITY_SCORE

    values = np.array([_normalize_report(r) for r in recent])
    return float(np.clip(np.sum(values * weights) / total, 0.0, 100.0))


# ─────────────────────────── Aggregates ─────────────────────────

def compute_confidence(area: AreaData) -> int:
    if area.degraded:
        return 0

    confidence = 0
    n_incidents = len(area.incidents)
    if n_incidents >= 10:
        confidence += 30
    elif n_incidents >= 5:
        confidence += 20
    elif n_incidents >= 1:
        confidence += 10

    n_reports = len(area.community_reports)
    if n_reports >= 20:
        confidence += 30
    elif n_reports >= 10:
        confidence += 20
    elif n_reports >= 5:
        confidence += 10

    if area.static.avg_police_response_minutes > 0:
        confidence += 20
    if area.static.street_light_coverage > 0:
        confidence += 10
    if area.static.population_density > 0:
        confidence += 10

    return min(confidence, 100)


def classify_level(overall: int) -> tuple[str, str]:
    """Map an overall score to (level, color)."""
    for threshold, level, color in SAFETY_LEVELS:
        if overall >= threshold:
            return level, color
    return SAFETY_LEVELS[-1][1], SAFETY_LEVELS[-1][2]


def weighted_overall(breakdown: ScoreBreakdown) -> int:
    """Weighted sum of the rounded factor scores, rounded half-up.

    Computed in integer hundredths so the result is exact.
    """
    components = breakdown.model_dump()
    total = sum(weight * components[name] for name, weight in FACTOR_WEIGHTS.items())
    return (total + 50) // 100


def compute_safety_score(coord: Coordinate, now: datetime, area: AreaData) -> SafetyScore:
    """Score `area` at `now`. Pure: identical inputs give identical output."""
    hour = now.hour
    static = area.static

    breakdown = ScoreBreakdown(
        time_of_day=round_half_up(time_of_day_score(hour)),
        historical_incidents=round_half_up(incident_score(area.incidents, now)),
        population_density=round_half_up(population_density_score(static.population_density, hour)),
        lighting=round_half_up(lighting_score(static.street_light_coverage, hour)),
        police_presence=round_half_up(police_score(
            static.police_station_distance_km,
            static.police_patrol_frequency,
            static.avg_police_response_minutes,
        )),
        community_reports=round_half_up(community_score(area.community_reports, now)),
    )

    overall = weighted_overall(breakdown)
    level, color = classify_level(overall)

    return SafetyScore(
        overall=overall,
        breakdown=breakdown,
        confidence=compute_confidence(area),
        level=level,
        color=color,
        geocell=area.geocell,
        calculated_at=now,
    )
