"""
Tests for the station intelligence pipeline
"""

from datetime import date, timedelta

import pytest
import requests


class FakeWaterConnector:
    """In-memory stand-in for USGSConnector."""

    def __init__(self, values=None, error=None, coords=(38.95, -77.13), percentiles=None):
        self.values = values or []
        self.error = error
        self.coords = coords
        self.percentiles = percentiles
        self.percentile_requests = []

    def get_water_data(self, station_id):
        from hydro_ai_impact.ontology.object_types import (
            DailyValue,
            StationStatus,
            WaterData,
            WaterReading,
        )

        if self.error is not None:
            raise self.error
        if not self.values:
            return WaterData.empty()

        start = date(2024, 1, 1)
        series = [DailyValue(start + timedelta(days=i), v) for i, v in enumerate(self.values)]
        # Deliberately out of order
        series.reverse()
        tail = series[0]
        return WaterData(
            latest=WaterReading(station_id, tail.value, "ft3/s", f"{tail.date.isoformat()}T00:00:00.000Z"),
            daily_series=tuple(series),
            station_status=StationStatus(active=True, last_record_date=tail.date, message=""),
        )

    def get_station_coords(self, station_id):
        return self.coords

    def get_flow_percentiles(self, station_id, current_value):
        self.percentile_requests.append(current_value)
        return self.percentiles


class FakeDroughtConnector:
    def __init__(self, error=None):
        self.error = error

    def get_drought_status(self, lat, lon):
        from hydro_ai_impact.ontology.object_types import DroughtStatus

        if self.error is not None:
            raise self.error
        return DroughtStatus(
            severity="D1 - Moderate Drought",
            county="Montgomery County",
            state_abbr="MD",
            valid_start="20240109",
            valid_end="2024-01-10",
            retrieved_at="2024-01-10T00:00:00+00:00",
        )


class FakeStore:
    def __init__(self, error=None):
        self.error = error
        self.records = []

    def write_snapshot(self, record):
        if self.error is not None:
            raise self.error
        self.records.append(record)


class FakeExecutor:
    def __init__(self):
        self.submitted = []

    def submit(self, fn, *args):
        self.submitted.append((fn, args))


def _pipeline(**kwargs):
    from hydro_ai_impact.pipeline import StationIntelligencePipeline
    from hydro_ai_impact.settings import EngineSettings

    kwargs.setdefault("water_connector", FakeWaterConnector([10] * 7 + [20]))
    return StationIntelligencePipeline(EngineSettings(), **kwargs)


class TestStationIntelligencePipeline:
    """Tests for end-to-end station analysis."""

    def test_run_combines_engines(self):
        result = _pipeline().run("01646500")

        assert result.station_id == "01646500"
        assert result.latest.value == 20
        assert result.analytics.moving_average_7 == pytest.approx(80 / 7)
        assert result.analytics.anomaly.severity.value == "moderate"
        assert result.analytics.sustainability_score == 85
        assert result.ai_impact.water_volume_liters == 2038810
        assert [tag.point.date for tag in result.analytics.per_point_tags] == sorted(
            tag.point.date for tag in result.analytics.per_point_tags
        )

    def test_fetch_failure_yields_empty_result(self):
        water = FakeWaterConnector(error=requests.exceptions.ConnectionError("down"))

        result = _pipeline(water_connector=water).run("01646500")

        assert result.latest is None
        assert result.ai_impact is None
        assert result.analytics.sustainability_score == 100
        assert result.analytics.anomaly.message == "Insufficient data"
        assert result.station_status.active is False

    def test_unexpected_fetch_error_yields_empty_result(self):
        water = FakeWaterConnector(error=AttributeError("'list' object has no attribute 'get'"))

        result = _pipeline(water_connector=water).run("01646500")

        assert result.latest is None
        assert result.ai_impact is None
        assert result.analytics.sustainability_score == 100
        assert result.station_status.active is False

    def test_unconvertible_reading_skips_ai_impact(self):
        result = _pipeline(water_connector=FakeWaterConnector([10] * 7 + [1e308])).run("01646500")

        assert result.latest.value == 1e308
        assert result.ai_impact is None

    def test_no_reading_skips_ai_impact(self):
        result = _pipeline(water_connector=FakeWaterConnector([])).run("01646500")

        assert result.ai_impact is None
        assert result.to_dict()["ai_impact"] is None
        assert result.to_dict()["water"]["daily_series"] == []

    def test_enrichment(self):
        from hydro_ai_impact.ontology.object_types import FlowPercentiles

        percentiles = FlowPercentiles(10.0, 20.0, 40.0, 60.0, 80.0, 18, "18th percentile, below normal range", 90)
        water = FakeWaterConnector([10] * 7 + [20], percentiles=percentiles)

        result = _pipeline(water_connector=water, drought_connector=FakeDroughtConnector()).run("01646500")

        assert result.drought_status.severity == "D1 - Moderate Drought"
        assert result.percentiles is percentiles
        assert water.percentile_requests == [20]

    def test_enrichment_failure_is_tolerated(self):
        drought = FakeDroughtConnector(error=RuntimeError("bad payload"))

        result = _pipeline(drought_connector=drought).run("01646500")

        assert result.drought_status is None
        assert result.analytics.sustainability_score == 85

    def test_snapshot_written(self):
        store = FakeStore()

        _pipeline(snapshot_store=store).run("01646500")

        record = store.records[0]
        assert record.station_id == "01646500"
        assert record.flow_value == 20
        assert record.anomaly_severity == "moderate"
        assert record.sustainability_score == 85
        assert "7-day average" in record.anomaly_message

    def test_snapshot_failure_does_not_propagate(self):
        import sqlite3

        store = FakeStore(error=sqlite3.OperationalError("database is locked"))

        result = _pipeline(snapshot_store=store).run("01646500")

        assert result.analytics.sustainability_score == 85

    def test_snapshot_submitted_to_executor(self):
        store = FakeStore()
        executor = FakeExecutor()

        _pipeline(snapshot_store=store, executor=executor).run("01646500")

        assert store.records == []
        fn, args = executor.submitted[0]
        fn(*args)
        assert store.records[0].station_id == "01646500"

    def test_narrative_input_has_no_series(self):
        from hydro_ai_impact.connectors.llm_connector import build_station_prompt
        from hydro_ai_impact.pipeline import StationIntelligencePipeline

        result = _pipeline(drought_connector=FakeDroughtConnector()).run("01646500")
        payload = StationIntelligencePipeline.narrative_input(result, station_name="Potomac")

        assert "daily_series" not in payload
        assert "per_point_tags" not in payload["analytics"]
        assert payload["analytics"]["sustainability_score"] == 85
        assert payload["drought_severity"] == "D1 - Moderate Drought"
        assert "Potomac (ID: 01646500)" in build_station_prompt(payload)

    def test_to_dict_shape(self):
        data = _pipeline().run("01646500").to_dict()

        assert set(data) == {
            "station_id",
            "retrieved_at",
            "water",
            "ai_impact",
            "analytics",
            "drought_status",
            "station_status",
            "percentiles",
        }
        assert len(data["water"]["daily_series"]) == 8
        assert data["analytics"]["anomaly"]["severity"] == "moderate"
