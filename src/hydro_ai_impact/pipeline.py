"""
Station Intelligence Pipeline
=============================

Orchestrates one station request end to end:

1. Fetch the daily discharge series and latest reading (USGS)
2. Run the deterministic intelligence engine over the series
3. Convert the latest flow into AI-impact equivalents
4. Enrich with drought status and historical percentiles (best effort)
5. Record a history snapshot without delaying or altering the response

Collaborators are injected so the pipeline can run against live services,
fixtures or mocks. The core engines never see a collaborator.
"""

import logging
import math
from concurrent.futures import Executor
from typing import Any, Callable, Dict, Optional

from hydro_ai_impact.models.ai_impact_model import AiImpactConverter
from hydro_ai_impact.ontology.object_types import (
    AiImpactResult,
    DroughtStatus,
    FlowPercentiles,
    IntelligenceResult,
    SnapshotRecord,
    StationIntelligence,
    WaterData,
    WaterReading,
)
from hydro_ai_impact.settings import EngineSettings
from hydro_ai_impact.transforms.intelligence_engine import analyze
from hydro_ai_impact.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class StationIntelligencePipeline:
    """
    Runs the full analysis for one station at a time.

    Example:
        settings = load_settings()
        pipeline = StationIntelligencePipeline(
            settings,
            water_connector=USGSConnector.from_settings(settings),
            drought_connector=DroughtMonitorConnector(),
            snapshot_store=SnapshotStore.from_settings(settings),
        )
        intelligence = pipeline.run("01646500")
    """

    def __init__(
        self,
        settings: EngineSettings,
        water_connector,
        drought_connector=None,
        snapshot_store=None,
        executor: Optional[Executor] = None,
    ):
        """
        Args:
            settings: Loaded engine settings
            water_connector: Provides get_water_data, and optionally
                             get_station_coords / get_flow_percentiles
            drought_connector: Provides get_drought_status(lat, lon)
            snapshot_store: Provides write_snapshot(record)
            executor: When given, snapshot writes are submitted here
                      instead of running inline
        """
        self.settings = settings
        self.water_connector = water_connector
        self.drought_connector = drought_connector
        self.snapshot_store = snapshot_store
        self.executor = executor
        self.converter = AiImpactConverter.from_settings(settings)

    def run(self, station_id: str) -> StationIntelligence:
        """
        Analyze a station.

        Never raises for collaborator failures: a failed fetch yields the
        empty-data result, failed enrichment yields None fields, and a
        failed snapshot write is only logged.
        """
        water = self._fetch_water_data(station_id)
        series = sorted(water.daily_series, key=lambda point: point.date)
        latest = water.latest

        current_value = latest.value if latest is not None else None
        analytics = analyze(series, current_value, self.settings)
        ai_impact = self._compute_ai_impact(latest)

        drought_status = self._fetch_drought_status(station_id)
        percentiles = self._fetch_percentiles(station_id, current_value)

        intelligence = StationIntelligence(
            station_id=station_id,
            retrieved_at=utc_now().isoformat(),
            latest=latest,
            analytics=analytics,
            ai_impact=ai_impact,
            station_status=water.station_status,
            drought_status=drought_status,
            percentiles=percentiles,
        )

        logger.info(
            f"Station {station_id}: score={analytics.sustainability_score}, "
            f"anomaly={analytics.anomaly.severity.value}, points={len(series)}"
        )

        self._record_snapshot(build_snapshot_record(station_id, latest, analytics, drought_status, percentiles))
        return intelligence

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def _fetch_water_data(self, station_id: str) -> WaterData:
        try:
            return self.water_connector.get_water_data(station_id)
        except Exception as e:
            logger.error(f"Water data fetch failed for {station_id}: {e}")
            return WaterData.empty(f"Unable to fetch data for station {station_id}.")

    def _compute_ai_impact(self, latest: Optional[WaterReading]) -> Optional[AiImpactResult]:
        if latest is None or latest.value is None or not math.isfinite(latest.value):
            return None
        try:
            return self.converter.compute(latest.value)
        except ValueError as e:
            logger.warning(f"AI impact skipped for {latest.station_id}: {e}")
            return None

    def _fetch_drought_status(self, station_id: str) -> Optional[DroughtStatus]:
        if self.drought_connector is None or not hasattr(self.water_connector, "get_station_coords"):
            return None

        def lookup():
            coords = self.water_connector.get_station_coords(station_id)
            if coords is None:
                return None
            return self.drought_connector.get_drought_status(*coords)

        return _best_effort(f"drought status for {station_id}", lookup)

    def _fetch_percentiles(self, station_id: str, current_value: Optional[float]) -> Optional[FlowPercentiles]:
        if not hasattr(self.water_connector, "get_flow_percentiles"):
            return None
        return _best_effort(
            f"flow percentiles for {station_id}",
            lambda: self.water_connector.get_flow_percentiles(station_id, current_value),
        )

    def _record_snapshot(self, record: SnapshotRecord):
        if self.snapshot_store is None:
            return
        if self.executor is not None:
            self.executor.submit(self._write_snapshot, record)
        else:
            self._write_snapshot(record)

    def _write_snapshot(self, record: SnapshotRecord):
        try:
            self.snapshot_store.write_snapshot(record)
        except Exception as e:
            logger.warning(f"Failed to write snapshot for {record.station_id}: {e}")

    # -------------------------------------------------------------------------
    # Narrative payload
    # -------------------------------------------------------------------------

    @staticmethod
    def narrative_input(
        intelligence: StationIntelligence, station_name: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Trimmed narrative payload: derived scalars only.

        The per-day series and per-point tags are never included.
        """
        latest = intelligence.latest
        analytics = intelligence.analytics
        ai_impact = intelligence.ai_impact
        percentiles = intelligence.percentiles
        status = intelligence.station_status

        return {
            "station_id": intelligence.station_id,
            "station_name": station_name,
            "latest": {
                "value": latest.value,
                "unit": latest.unit,
                "timestamp": latest.timestamp,
            } if latest else None,
            "analytics": {
                "moving_average_7": analytics.moving_average_7,
                "moving_average_30": analytics.moving_average_30,
                "volatility_index": analytics.volatility_index,
                "anomaly": {
                    "detected": analytics.anomaly.detected,
                    "severity": analytics.anomaly.severity.value,
                    "message": analytics.anomaly.message,
                },
                "sustainability_score": analytics.sustainability_score,
            },
            "ai_impact": {
                "water_volume_liters": ai_impact.water_volume_liters,
                "kwh_equivalent": ai_impact.kwh_equivalent,
                "inference_equivalent": ai_impact.inference_equivalent,
                "gpu_hours_equivalent": ai_impact.gpu_hours_equivalent,
                "explanation": ai_impact.explanation,
            } if ai_impact else None,
            "drought_severity": (
                intelligence.drought_status.severity if intelligence.drought_status else None
            ),
            "enrichment": {
                "percentile_interpretation": percentiles.interpretation if percentiles else None,
                "current_percentile": percentiles.current_percentile if percentiles else None,
                "record_years": percentiles.record_years if percentiles else None,
                "station_status_message": status.message or None,
                "station_active": status.active,
                "p10": percentiles.p10 if percentiles else None,
                "p50": percentiles.p50 if percentiles else None,
                "p90": percentiles.p90 if percentiles else None,
            },
        }


def build_snapshot_record(
    station_id: str,
    latest: Optional[WaterReading],
    analytics: IntelligenceResult,
    drought_status: Optional[DroughtStatus],
    percentiles: Optional[FlowPercentiles],
) -> SnapshotRecord:
    """Flatten one pipeline result into the persisted snapshot shape."""
    return SnapshotRecord(
        station_id=station_id,
        flow_value=latest.value if latest else None,
        flow_unit=latest.unit if latest else None,
        sustainability_score=analytics.sustainability_score,
        anomaly_severity=analytics.anomaly.severity.value,
        drought_severity=drought_status.severity if drought_status else None,
        current_percentile=percentiles.current_percentile if percentiles else None,
        moving_avg_7=analytics.moving_average_7,
        moving_avg_30=analytics.moving_average_30,
        volatility_index=analytics.volatility_index,
        anomaly_message=analytics.anomaly.message if analytics.anomaly.detected else None,
    )


def _best_effort(description: str, fetch: Callable[[], Any]) -> Any:
    """Run an optional enrichment lookup; any failure is logged and yields None."""
    try:
        return fetch()
    except Exception as e:
        logger.warning(f"Could not fetch {description}: {e}")
        return None
