"""Tunable constants and environment lookups for the hybrid planner."""

import os

# ── Provider endpoints ─────────────────────────────────────────────────
DEFAULT_DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"
DEFAULT_ELEVATION_URL = "https://maps.googleapis.com/maps/api/elevation/json"
PLACEHOLDER_API_KEY = "your-google-maps-key-here"


def get_api_key() -> str:
    return os.getenv("GOOGLE_MAPS_API_KEY", "")


def get_directions_url() -> str:
    return os.getenv("DIRECTIONS_BASE_URL", DEFAULT_DIRECTIONS_URL)


def get_elevation_url() -> str:
    return os.getenv("ELEVATION_BASE_URL", DEFAULT_ELEVATION_URL)


def get_directions_timeout_sec() -> float:
    return float(os.getenv("DIRECTIONS_TIMEOUT_SEC", "15"))


def get_display_timezone() -> str:
    return os.getenv("DISPLAY_TIMEZONE", "UTC")


def get_max_options() -> int:
    return int(os.getenv("PLANNER_MAX_OPTIONS", "6"))


# ── Speed model ────────────────────────────────────────────────────────
# Bike and walk keep provider durations; these only drive skate conversion.
WALK_MPH = 3.0
BIKE_MPH_ASSUMED = 10.0
SKATE_MPH_FLAT = 6.0
SKATE_MPH_DOWNHILL_CAP = 10.0
SKATE_UPHILL_COLLAPSE_DEG = 8.0

METERS_PER_MILE = 1609.344
MPH_TO_MPS = METERS_PER_MILE / 3600
WALK_MPS = WALK_MPH * MPH_TO_MPS
SKATE_MPS_FLAT = SKATE_MPH_FLAT * MPH_TO_MPS
SKATE_MPS_CAP = SKATE_MPH_DOWNHILL_CAP * MPH_TO_MPS

# ── Micro-leg selection ────────────────────────────────────────────────
MICRO_QUERY_MIN_DISTANCE_M = 35.0  # interior station transfers
HILL_WEIGHT_BIKE_PENALTY = 0.15

# ── Timeline ───────────────────────────────────────────────────────────
WAIT_SUPPRESS_SEC = 20.0
TRANSFER_BUFFER_SEC = 60.0
MISSED_DEPARTURE_BUFFER_SEC = 30.0

# ── Composer ───────────────────────────────────────────────────────────
MAX_TRANSIT_EXPANSIONS = 4
MAX_DIRECT_BIKE_ROUTES = 3
TAXING_DURATION_SEC = 90 * 60
TAXING_DISTANCE_M = 12 * METERS_PER_MILE
DEPART_SHIFT_MIN_DELTA_SEC = 60.0
DEPART_SHIFT_BUFFER_SEC = 60.0
DEPART_SHIFT_CAP_SEC = 25 * 60

# ── Variants ───────────────────────────────────────────────────────────
SHORT_TRANSIT_LEG_SEC = 10 * 60
LONG_TRANSFER_WAIT_SEC = 10 * 60
KEEP_VARIANT_RATIO = 1.10
DROP_ORIGINAL_RATIO = 0.80
MAX_REMAINDER_ROUTES = 2
STOP_KEY_PRECISION = 5  # ~1 m

# ── Session ────────────────────────────────────────────────────────────
ELEVATION_DEBOUNCE_SEC = 0.65

# ── Elevation sampling ─────────────────────────────────────────────────
ELEVATION_MIN_SAMPLES = 12
ELEVATION_MAX_SAMPLES = 48
