"""SafeScore Engine: Configuration & Constants"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env from project root (one level up from safescore/)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path)

# ── Document store ──
STORE_URL = os.environ.get("SAFESCORE_STORE_URL", "")
STORE_TOKEN = os.environ.get("SAFESCORE_STORE_TOKEN", "")
STORE_TIMEOUT = float(os.environ.get("SAFESCORE_STORE_TIMEOUT", "5.0"))
REPOSITORY_TIMEOUT = float(os.environ.get("SAFESCORE_REPOSITORY_TIMEOUT", "2.0"))

# ── Score cache ──
CACHE_BACKEND = os.environ.get("SAFESCORE_CACHE_BACKEND", "memory")  # memory, store
CACHE_MAX_SIZE = int(os.environ.get("SAFESCORE_CACHE_MAX_SIZE", "5000"))
SCORE_TTL_SECONDS = 3600
EPOCH_TABLE_SIZE = 10_000

# Collections
INCIDENTS = "incidents"
COMMUNITY_REPORTS = "community_reports"
AREA_STATIC = "area_static"
SCORE_CACHE = "score_cache"
SCORE_HISTORY = "score_history"

# ~0.6 km x 1.2 km cells
GEOCELL_PRECISION = 6

# ── Area data windows ──
INCIDENT_WINDOW_DAYS = 180
INCIDENT_LIMIT = 100
REPORT_WINDOW_DAYS = 30
REPORT_LIMIT = 50

# Substituted per field when area_static has no value
STATIC_DEFAULTS = {
    "population_density": 1000.0,
    "street_light_coverage": 60.0,
    "police_station_distance_km": 2.0,
    "police_patrol_frequency": 5.0,
    "avg_police_response_minutes": 10.0,
}

# ── Scoring ──
# Integer percent weights, order matches ScoreBreakdown. Must sum to 100.
FACTOR_WEIGHTS = {
    "time_of_day": 20,
    "historical_incidents": 30,
    "population_density": 15,
    "lighting": 15,
    "police_presence": 10,
    "community_reports": 10,
}

SEVERITY_WEIGHTS = {
    "harassment": 1.0,
    "other": 1.5,
    "theft": 2.0,
    "assault": 3.0,
}
VERIFIED_MULTIPLIER = 1.5
INCIDENT_PENALTY_SCALE = 10.0
INCIDENT_DECAY_DAYS = 30
REPORT_DECAY_DAYS = 7
EMPTY_COMMUNITY_SCORE = 70.0

# (min score, level, color), checked top-down
SAFETY_LEVELS = [
    (80, "Very Safe", "#22c55e"),
    (60, "Safe", "#84cc16"),
    (40, "Moderate", "#eab308"),
    (20, "Unsafe", "#f97316"),
    (0, "Very Unsafe", "#ef4444"),
]
