"""
Ontology Object Type Definitions
=================================

Value objects exchanged between the data-source connectors, the two
deterministic engines, the snapshot store and the narrative layer.

Every result type is created fresh per call and owned by the caller.
Nullable numerics are ``Optional[float]``; no sentinel values are used.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional, Tuple


# =============================================================================
# OBSERVATIONS
# =============================================================================

@dataclass(frozen=True)
class DailyValue:
    """
    One daily streamflow observation.

    Within a series dates are unique and strictly increasing.
    """
    date: date
    value: float
    unit: str = "ft3/s"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "value": self.value,
            "unit": self.unit,
        }


@dataclass(frozen=True)
class WaterReading:
    """Latest reading for a station, derived from the tail of its daily series."""
    station_id: str
    value: float
    unit: str
    timestamp: str
    parameter: str = "Streamflow"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "station_id": self.station_id,
            "parameter": self.parameter,
            "unit": self.unit,
            "value": self.value,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class StationStatus:
    """Whether a station is still reporting."""
    active: bool
    last_record_date: Optional[date]
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active": self.active,
            "last_record_date": self.last_record_date.isoformat() if self.last_record_date else None,
            "message": self.message,
        }


@dataclass(frozen=True)
class WaterData:
    """Everything the data-source collaborator returns for one station."""
    latest: Optional[WaterReading]
    daily_series: Tuple[DailyValue, ...]
    station_status: StationStatus

    @classmethod
    def empty(cls, message: str = "No data available for this station.") -> "WaterData":
        return cls(
            latest=None,
            daily_series=(),
            station_status=StationStatus(active=False, last_record_date=None, message=message),
        )


@dataclass(frozen=True)
class WaterStation:
    """A USGS monitoring location with a discharge time series."""
    id: str
    name: str
    state: str
    latitude: Optional[float]
    longitude: Optional[float]
    type: str = "Stream"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "state": self.state,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "type": self.type,
        }


# =============================================================================
# INTELLIGENCE ENGINE OUTPUT
# =============================================================================

class AnomalySeverity(Enum):
    """Categorical anomaly classification."""
    NONE = "none"
    MODERATE = "moderate"
    SEVERE = "severe"


@dataclass(frozen=True)
class AnomalyClassification:
    """
    Result of the single live anomaly check.

    ``ratio`` is current / 7-day average when both are defined.
    ``threshold`` is the multiplier that triggered the classification,
    0.0 when nothing was triggered.
    """
    detected: bool
    severity: AnomalySeverity
    message: str
    threshold: float = 0.0
    ratio: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detected": self.detected,
            "severity": self.severity.value,
            "message": self.message,
            "threshold": self.threshold,
            "ratio": self.ratio,
        }


@dataclass(frozen=True)
class PointTag:
    """A daily value tagged against its own trailing window."""
    point: DailyValue
    is_anomaly: bool
    is_severe: bool

    def to_dict(self) -> Dict[str, Any]:
        result = self.point.to_dict()
        result["is_anomaly"] = self.is_anomaly
        result["is_severe"] = self.is_severe
        return result


@dataclass(frozen=True)
class IntelligenceResult:
    """Aggregate output of ``intelligence_engine.analyze``."""
    moving_average_7: Optional[float]
    moving_average_30: Optional[float]
    volatility_index: Optional[float]
    anomaly: AnomalyClassification
    sustainability_score: int
    per_point_tags: Tuple[PointTag, ...] = ()

    def analytics_dict(self) -> Dict[str, Any]:
        """Derived scalars only, without the per-point series."""
        return {
            "moving_average_7": self.moving_average_7,
            "moving_average_30": self.moving_average_30,
            "volatility_index": self.volatility_index,
            "anomaly": self.anomaly.to_dict(),
            "sustainability_score": self.sustainability_score,
        }

    def to_dict(self) -> Dict[str, Any]:
        result = self.analytics_dict()
        result["per_point_tags"] = [tag.to_dict() for tag in self.per_point_tags]
        return result


# =============================================================================
# AI IMPACT OUTPUT
# =============================================================================

@dataclass(frozen=True)
class ModelConstants:
    """The three conversion constants used for an AI-impact computation."""
    water_per_kwh: float
    kwh_per_inference: float
    kwh_per_gpu_training_hour: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "water_per_kwh": self.water_per_kwh,
            "kwh_per_inference": self.kwh_per_inference,
            "kwh_per_gpu_training_hour": self.kwh_per_gpu_training_hour,
        }


@dataclass(frozen=True)
class AiImpactResult:
    """Flow expressed as water volume, energy and compute equivalents."""
    water_volume_liters: int
    kwh_equivalent: float
    inference_equivalent: int
    gpu_hours_equivalent: float
    model_constants: ModelConstants
    explanation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "water_volume_liters": self.water_volume_liters,
            "kwh_equivalent": self.kwh_equivalent,
            "inference_equivalent": self.inference_equivalent,
            "gpu_hours_equivalent": self.gpu_hours_equivalent,
            "model_constants": self.model_constants.to_dict(),
            "explanation": self.explanation,
        }


# =============================================================================
# ENRICHMENT CONTEXT
# =============================================================================

@dataclass(frozen=True)
class FlowPercentiles:
    """Historical daily percentiles for today's calendar day."""
    p10: Optional[float]
    p25: Optional[float]
    p50: Optional[float]
    p75: Optional[float]
    p90: Optional[float]
    current_percentile: Optional[int]
    interpretation: str
    record_years: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "p10": self.p10,
            "p25": self.p25,
            "p50": self.p50,
            "p75": self.p75,
            "p90": self.p90,
            "current_percentile": self.current_percentile,
            "interpretation": self.interpretation,
            "record_years": self.record_years,
        }


@dataclass(frozen=True)
class DroughtStatus:
    """U.S. Drought Monitor classification for the station's county."""
    severity: str
    county: str
    state_abbr: str
    valid_start: str
    valid_end: str
    retrieved_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity,
            "county": self.county,
            "state_abbr": self.state_abbr,
            "valid_start": self.valid_start,
            "valid_end": self.valid_end,
            "retrieved_at": self.retrieved_at,
        }


# =============================================================================
# PERSISTENCE
# =============================================================================

@dataclass(frozen=True)
class SnapshotRecord:
    """Flattened snapshot handed to the persistence collaborator."""
    station_id: str
    flow_value: Optional[float] = None
    flow_unit: Optional[str] = None
    sustainability_score: Optional[int] = None
    anomaly_severity: Optional[str] = None
    drought_severity: Optional[str] = None
    current_percentile: Optional[int] = None
    moving_avg_7: Optional[float] = None
    moving_avg_30: Optional[float] = None
    volatility_index: Optional[float] = None
    anomaly_message: Optional[str] = None


# =============================================================================
# PIPELINE OUTPUT
# =============================================================================

@dataclass(frozen=True)
class StationIntelligence:
    """Combined pipeline output for a single station request."""
    station_id: str
    retrieved_at: str
    latest: Optional[WaterReading]
    analytics: IntelligenceResult
    ai_impact: Optional[AiImpactResult]
    station_status: StationStatus
    drought_status: Optional[DroughtStatus] = None
    percentiles: Optional[FlowPercentiles] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "station_id": self.station_id,
            "retrieved_at": self.retrieved_at,
            "water": {
                "latest": self.latest.to_dict() if self.latest else None,
                "daily_series": [tag.to_dict() for tag in self.analytics.per_point_tags],
            },
            "ai_impact": self.ai_impact.to_dict() if self.ai_impact else None,
            "analytics": self.analytics.analytics_dict(),
            "drought_status": self.drought_status.to_dict() if self.drought_status else None,
            "station_status": self.station_status.to_dict(),
            "percentiles": self.percentiles.to_dict() if self.percentiles else None,
        }


# =============================================================================
# NARRATIVE OUTPUT
# =============================================================================

@dataclass(frozen=True)
class NarrativeResponse:
    """Generated station narrative and the model that produced it."""
    narrative: str
    provider: str
    model: str
    generated_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "narrative": self.narrative,
            "provider": self.provider,
            "model": self.model,
            "generated_at": self.generated_at,
        }
