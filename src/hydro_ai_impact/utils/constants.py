"""
Constants and configuration defaults for the streamflow intelligence engine.

All threshold values, API endpoints, unit conversions, and schema
constants are centralized here for easy configuration. Runtime overrides
are applied by ``hydro_ai_impact.settings``.
"""

from typing import Dict


# =============================================================================
# API ENDPOINTS
# =============================================================================

class USGSEndpoints:
    """USGS Water Data OGC API endpoints."""
    BASE_URL = "https://api.waterdata.usgs.gov/ogcapi/v0"
    TIME_SERIES_METADATA = "/collections/time-series-metadata/items"
    DAILY = "/collections/daily/items"
    # Legacy NWIS statistics service (RDB text output)
    STATISTICS_URL = "https://waterservices.usgs.gov/nwis/stat/"
    STREAMFLOW_PARAM = "00060"  # Discharge, ft³/s


class DroughtMonitorEndpoints:
    """U.S. Drought Monitor data API endpoints."""
    BASE_URL = "https://droughtmonitor.unl.edu/DmData/Api.ashx"
    COUNTY_BY_LATLON = "/getcountybylatlon"
    AREA_PERCENT = "/getStatisticsByAreaPercent"


class LLMEndpoints:
    """Narrative text generation endpoints."""
    LOCAL_BASE_URL = "http://localhost:1234/v1"   # LM Studio default
    OPENAI_BASE_URL = "https://api.openai.com/v1"
    ANTHROPIC_BASE_URL = "https://api.anthropic.com"
    CHAT_COMPLETIONS = "/chat/completions"
    ANTHROPIC_MESSAGES = "/v1/messages"
    ANTHROPIC_VERSION = "2023-06-01"


# =============================================================================
# UNIT CONVERSIONS
# =============================================================================

class FlowUnits:
    """Conversion factors for flow and volume units."""
    CFS_TO_LPS = 28.3168          # ft³/s -> L/s, exact literal, never rounded
    SECONDS_PER_HOUR = 3600


# =============================================================================
# INTELLIGENCE ENGINE PARAMETERS
# =============================================================================

class IntelligenceConfig:
    """Defaults for the deterministic intelligence engine."""
    # Rolling windows (days)
    SHORT_WINDOW = 7
    LONG_WINDOW = 30

    # Anomaly multipliers, inclusive lower bounds of their tier
    ANOMALY_MODERATE_MULTIPLIER = 1.5
    ANOMALY_SEVERE_MULTIPLIER = 2.0

    # Volatility (coefficient of variation)
    VOLATILITY_HIGH_THRESHOLD = 0.5
    VOLATILITY_CAP = 2.0
    VOLATILITY_DECIMALS = 3

    # Sustainability score
    SCORE_BASE = 100
    SCORE_MIN = 0
    SCORE_MAX = 100
    HIGH_VOLATILITY_DEDUCTION = 20
    SEVERE_ANOMALY_DEDUCTION = 30
    MODERATE_ANOMALY_DEDUCTION = 15
    LOW_FLOW_DEDUCTION = 15
    LOW_FLOW_PERCENTILE = 0.1
    LOW_FLOW_MIN_POINTS = 10


class AiImpactConfig:
    """Defaults for the AI-impact conversion pipeline."""
    # Data center cooling average, liters of water per kWh
    WATER_PER_KWH = 1.8
    # Large-model inference request, kWh
    KWH_PER_INFERENCE = 0.001
    # A100-class GPU at ~80% utilization, kWh per GPU-hour
    KWH_PER_GPU_TRAINING_HOUR = 1.2
    DEFAULT_WINDOW_SECONDS = FlowUnits.SECONDS_PER_HOUR


# =============================================================================
# COLLABORATOR CONFIGURATION
# =============================================================================

class ConnectorConfig:
    """Timeouts, caching, and look-back windows for remote collaborators."""
    USGS_TIMEOUT_SECONDS = 20
    SIDE_SERVICE_TIMEOUT_SECONDS = 10
    LLM_TIMEOUT_SECONDS = 60
    CACHE_TTL_SECONDS = 300
    DAILY_SERIES_DAYS = 90
    DAILY_SERIES_LIMIT = 100
    DROUGHT_LOOKBACK_DAYS = 14
    # A station whose last daily record is older than this is reported inactive
    STATION_STALE_DAYS = 30


class HistoryConfig:
    """Snapshot store query limits."""
    DEFAULT_DB_PATH = "hydro_history.db"
    DEFAULT_HISTORY_DAYS = 90
    MAX_SNAPSHOTS = 2000
    MAX_ANOMALY_EVENTS = 100
    TOP_STATIONS = 10
    RECENT_ANOMALIES = 10


class LLMConfig:
    """Narrative generation defaults per provider."""
    DEFAULT_PROVIDER = "local"
    DEFAULT_MODELS = {
        "local": "mistral-7b-instruct-v0.3",
        "openai": "gpt-4o-mini",
        "anthropic": "claude-3-haiku-20240307",
    }
    TEMPERATURE = 0.3
    MAX_TOKENS = 600


# =============================================================================
# REFERENCE DATA
# =============================================================================

STATE_NAMES: Dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "FL": "Florida", "GA": "Georgia", "HI": "Hawaii", "ID": "Idaho",
    "IL": "Illinois", "IN": "Indiana", "IA": "Iowa", "KS": "Kansas",
    "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma",
    "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah",
    "VT": "Vermont", "VA": "Virginia", "WA": "Washington", "WV": "West Virginia",
    "WI": "Wisconsin", "WY": "Wyoming",
}

# Drought Monitor categories, most severe first
DROUGHT_CATEGORIES = [
    ("D4", "D4 - Exceptional Drought"),
    ("D3", "D3 - Extreme Drought"),
    ("D2", "D2 - Severe Drought"),
    ("D1", "D1 - Moderate Drought"),
    ("D0", "D0 - Abnormally Dry"),
]


# =============================================================================
# DATA SCHEMAS
# =============================================================================

# Column names for persisted station snapshots
SNAPSHOT_SCHEMA = {
    "station_id": "string",
    "observed_at": "timestamp",
    "flow_value": "double",
    "flow_unit": "string",
    "sustainability_score": "integer",
    "anomaly_severity": "string",     # none, moderate, severe
    "drought_severity": "string",
    "current_percentile": "integer",
    "moving_avg_7": "double",
    "moving_avg_30": "double",
    "volatility_index": "double",
}

# Column names for anomaly events (written only when severity != none)
ANOMALY_EVENT_SCHEMA = {
    "station_id": "string",
    "detected_at": "timestamp",
    "severity": "string",
    "flow_value": "double",
    "message": "string",
    "drought_severity": "string",
    "sustainability_score": "integer",
}
