"""
Tests for the Hydro AI Impact analytics core
============================================

Run with: pytest tests/ -v
"""

import math
from datetime import date, timedelta

import pytest


def _series(values, start=date(2024, 1, 1)):
    from hydro_ai_impact.ontology.object_types import DailyValue
    return [DailyValue(date=start + timedelta(days=i), value=v) for i, v in enumerate(values)]


class TestMovingAverage:
    """Tests for the trailing moving averages."""

    def test_uses_last_window_values(self):
        from hydro_ai_impact.transforms.intelligence_engine import compute_moving_average

        values = [100.0] + [10.0] * 7
        assert compute_moving_average(values, 7) == 10.0

    def test_short_series_averages_everything(self):
        from hydro_ai_impact.transforms.intelligence_engine import compute_moving_average

        assert compute_moving_average([2.0, 4.0], 30) == 3.0

    def test_empty_is_none(self):
        from hydro_ai_impact.transforms.intelligence_engine import compute_moving_average

        assert compute_moving_average([], 7) is None


class TestVolatilityIndex:
    """Tests for the coefficient-of-variation volatility index."""

    def test_constant_series_is_zero(self):
        from hydro_ai_impact.transforms.intelligence_engine import compute_volatility_index

        for n in (2, 5, 40):
            assert compute_volatility_index([7.5] * n) == 0.0

    def test_population_std_rounded(self):
        from hydro_ai_impact.transforms.intelligence_engine import compute_volatility_index

        # mean 3, population std sqrt(2) -> 0.4714
        assert compute_volatility_index([1.0, 2.0, 3.0, 4.0, 5.0]) == 0.471

    def test_capped_at_two(self):
        from hydro_ai_impact.transforms.intelligence_engine import compute_volatility_index

        # one non-zero among nine: cv = sqrt(8)
        assert compute_volatility_index([9.0] + [0.0] * 8) == 2.0

    def test_undefined_cases(self):
        from hydro_ai_impact.transforms.intelligence_engine import compute_volatility_index

        assert compute_volatility_index([]) is None
        assert compute_volatility_index([5.0]) is None
        assert compute_volatility_index([1.0, -1.0]) is None

    def test_negative_mean_keeps_sign(self):
        from hydro_ai_impact.transforms.intelligence_engine import compute_volatility_index

        assert compute_volatility_index([-1.0, -3.0]) == -0.5

    def test_overflowing_mean_is_none(self):
        from hydro_ai_impact.transforms.intelligence_engine import compute_volatility_index

        assert compute_volatility_index([1e308] * 3) is None


class TestAnomalyDetection:
    """Tests for the live anomaly classification."""

    def test_ratio_at_moderate_boundary_is_moderate(self):
        from hydro_ai_impact.ontology.object_types import AnomalySeverity
        from hydro_ai_impact.transforms.intelligence_engine import detect_anomaly

        result = detect_anomaly(15.0, 10.0)
        assert result.detected is True
        assert result.severity is AnomalySeverity.MODERATE
        assert result.threshold == 1.5

    def test_ratio_at_severe_boundary_is_severe(self):
        from hydro_ai_impact.ontology.object_types import AnomalySeverity
        from hydro_ai_impact.transforms.intelligence_engine import detect_anomaly

        result = detect_anomaly(20.0, 10.0)
        assert result.severity is AnomalySeverity.SEVERE
        assert result.threshold == 2.0

    def test_below_moderate_is_normal(self):
        from hydro_ai_impact.ontology.object_types import AnomalySeverity
        from hydro_ai_impact.transforms.intelligence_engine import detect_anomaly

        result = detect_anomaly(14.9, 10.0)
        assert result.detected is False
        assert result.severity is AnomalySeverity.NONE
        assert result.threshold == 0.0
        assert result.ratio == pytest.approx(1.49)

    def test_insufficient_data(self):
        from hydro_ai_impact.transforms.intelligence_engine import detect_anomaly

        for current, ma7 in ((None, 10.0), (10.0, None), (10.0, 0.0)):
            result = detect_anomaly(current, ma7)
            assert result.detected is False
            assert result.message == "Insufficient data"
            assert result.ratio is None

    def test_message_names_ratio_and_threshold(self):
        from hydro_ai_impact.transforms.intelligence_engine import detect_anomaly

        result = detect_anomaly(100.0, 10.0)
        assert "10.0x the 7-day average" in result.message
        assert "severe" in result.message

    def test_custom_multipliers(self):
        from hydro_ai_impact.ontology.object_types import AnomalySeverity
        from hydro_ai_impact.settings import EngineSettings
        from hydro_ai_impact.transforms.intelligence_engine import detect_anomaly

        settings = EngineSettings(anomaly_moderate_multiplier=1.2, anomaly_severe_multiplier=3.0)
        assert detect_anomaly(13.0, 10.0, settings).severity is AnomalySeverity.MODERATE
        assert detect_anomaly(25.0, 10.0, settings).severity is AnomalySeverity.MODERATE
        assert detect_anomaly(30.0, 10.0, settings).severity is AnomalySeverity.SEVERE


class TestSustainabilityScore:
    """Tests for the additive-deduction sustainability score."""

    def test_all_three_deductions(self):
        from hydro_ai_impact.ontology.object_types import AnomalySeverity
        from hydro_ai_impact.transforms.intelligence_engine import analyze

        series = _series([100, 1, 100, 1, 100, 1, 100, 1, 100, 0.5])
        result = analyze(series, current_value=1000.0)

        assert result.volatility_index > 0.5
        assert result.anomaly.severity is AnomalySeverity.SEVERE
        assert result.sustainability_score == 35

    def test_low_flow_deduction_needs_ten_points(self):
        from hydro_ai_impact.transforms.intelligence_engine import analyze

        assert analyze(_series([10] * 9 + [1])).sustainability_score == 85
        assert analyze(_series([10] * 8 + [1])).sustainability_score == 100

    def test_moderate_and_severe_deductions(self):
        from hydro_ai_impact.transforms.intelligence_engine import analyze

        series = _series([10] * 7)
        assert analyze(series, current_value=10.0).sustainability_score == 100
        assert analyze(series, current_value=15.0).sustainability_score == 85
        assert analyze(series, current_value=20.0).sustainability_score == 70

    def test_score_never_increases_with_more_deductions(self):
        from hydro_ai_impact.transforms.intelligence_engine import analyze

        series = _series([10] * 7)
        scores = [analyze(series, current_value=v).sustainability_score for v in (10.0, 15.0, 20.0)]
        assert scores == sorted(scores, reverse=True)
        assert all(0 <= s <= 100 for s in scores)


class TestAnalyze:
    """Tests for the full intelligence analysis."""

    def test_empty_series(self):
        from hydro_ai_impact.ontology.object_types import AnomalySeverity
        from hydro_ai_impact.transforms.intelligence_engine import analyze

        result = analyze([], None)

        assert result.moving_average_7 is None
        assert result.moving_average_30 is None
        assert result.volatility_index is None
        assert result.anomaly.detected is False
        assert result.anomaly.severity is AnomalySeverity.NONE
        assert result.sustainability_score == 100
        assert result.per_point_tags == ()

    def test_spike_after_flat_week_is_severe(self):
        from hydro_ai_impact.ontology.object_types import AnomalySeverity
        from hydro_ai_impact.transforms.intelligence_engine import analyze

        result = analyze(_series([10] * 7 + [100]), current_value=100.0)

        assert result.moving_average_7 == pytest.approx(160 / 7)
        assert result.anomaly.severity is AnomalySeverity.SEVERE
        assert result.anomaly.threshold == 2.0
        assert result.per_point_tags[-1].is_severe is True

    def test_current_value_defaults_to_last_value(self):
        from hydro_ai_impact.transforms.intelligence_engine import analyze

        series = _series([10] * 7 + [20])
        assert analyze(series).anomaly.severity.value == "moderate"
        assert analyze(series, current_value=math.nan).anomaly.severity.value == "moderate"

    def test_non_finite_values_are_dropped(self):
        from hydro_ai_impact.transforms.intelligence_engine import analyze

        series = _series([10.0, math.nan, 10.0, math.inf])
        result = analyze(series)

        assert result.moving_average_7 == 10.0
        assert result.volatility_index == 0.0
        assert len(result.per_point_tags) == 4
        assert not any(tag.is_anomaly for tag in result.per_point_tags)

    def test_overflowing_values_do_not_raise(self):
        from hydro_ai_impact.transforms.intelligence_engine import analyze

        result = analyze(_series([1e308] * 3))

        assert result.volatility_index is None
        assert result.anomaly.detected is False
        assert result.sustainability_score == 100

    def test_integer_too_large_for_float_is_dropped(self):
        from hydro_ai_impact.transforms.intelligence_engine import analyze, finite_values

        series = _series([10, 10 ** 400])

        assert finite_values(series) == [10.0]
        result = analyze(series)
        assert result.moving_average_7 == 10.0
        assert len(result.per_point_tags) == 2
        assert result.per_point_tags[-1].is_anomaly is False

    def test_input_not_modified(self):
        from hydro_ai_impact.transforms.intelligence_engine import analyze

        series = _series([5, 6, 7])
        snapshot = list(series)
        analyze(series, 7.0)
        assert series == snapshot

    def test_idempotent(self):
        from hydro_ai_impact.transforms.intelligence_engine import analyze

        series = _series([3.2, 4.1, 9.9, 2.2, 5.5, 6.1, 7.0, 12.4, 1.1, 8.8, 4.4])
        assert analyze(series, 20.0) == analyze(series, 20.0)


class TestPerPointTagging:
    """Tests for rolling per-point anomaly tags."""

    def test_first_point_never_tagged(self):
        from hydro_ai_impact.transforms.intelligence_engine import tag_anomalies_in_series

        tags = tag_anomalies_in_series(_series([1000, 1, 1]))
        assert tags[0].is_anomaly is False
        assert tags[0].is_severe is False

    def test_tags_use_trailing_window_only(self):
        from hydro_ai_impact.transforms.intelligence_engine import tag_anomalies_in_series

        tags = tag_anomalies_in_series(_series([10, 10, 15, 30]))

        assert [t.is_anomaly for t in tags] == [False, False, True, True]
        assert [t.is_severe for t in tags] == [False, False, False, True]

    def test_tags_differ_from_live_check(self):
        from hydro_ai_impact.transforms.intelligence_engine import analyze

        # Last day is severe against the 7 days before it, but the live
        # reading is compared with an average that includes that day.
        result = analyze(_series([10] * 7 + [20]), current_value=20.0)
        assert result.per_point_tags[-1].is_severe is True
        assert result.anomaly.severity.value == "moderate"

    def test_serialized_tag_carries_point(self):
        from hydro_ai_impact.transforms.intelligence_engine import tag_anomalies_in_series

        data = tag_anomalies_in_series(_series([4, 12]))[1].to_dict()
        assert data == {
            "date": "2024-01-02",
            "value": 12,
            "unit": "ft3/s",
            "is_anomaly": True,
            "is_severe": True,
        }


class TestAiImpactConverter:
    """Tests for the flow -> AI impact conversion."""

    def test_reference_values(self):
        from hydro_ai_impact.models.ai_impact_model import AiImpactConverter

        result = AiImpactConverter().compute(10)

        assert result.water_volume_liters == 1019405
        assert result.kwh_equivalent == 566336.0
        assert result.gpu_hours_equivalent == 471946.67
        assert result.inference_equivalent == math.floor((10 * 28.3168 * 3600 / 1.8) / 0.001)
        assert abs(result.inference_equivalent - 566336000) <= 1

    def test_zero_flow(self):
        from hydro_ai_impact.models.ai_impact_model import AiImpactConverter

        result = AiImpactConverter().compute(0)
        assert result.water_volume_liters == 0
        assert result.kwh_equivalent == 0
        assert result.inference_equivalent == 0
        assert result.gpu_hours_equivalent == 0

    def test_negative_flow_passes_through(self):
        from hydro_ai_impact.models.ai_impact_model import AiImpactConverter

        result = AiImpactConverter().compute(-1)
        assert result.water_volume_liters < 0
        assert result.kwh_equivalent < 0

    def test_window_scales_volume(self):
        from hydro_ai_impact.models.ai_impact_model import AiImpactConverter

        converter = AiImpactConverter()
        hour = converter.compute(1, 3600)
        two_hours = converter.compute(1, 7200)
        assert two_hours.water_volume_liters == pytest.approx(2 * hour.water_volume_liters, abs=1)

    def test_invalid_window(self):
        from hydro_ai_impact.models.ai_impact_model import AiImpactConverter

        converter = AiImpactConverter()
        for window in (0, -60, 1.5):
            with pytest.raises(ValueError):
                converter.compute(10, window)

    def test_invalid_constants(self):
        from hydro_ai_impact.models.ai_impact_model import AiImpactConverter
        from hydro_ai_impact.settings import ConfigurationError

        with pytest.raises(ConfigurationError):
            AiImpactConverter(water_per_kwh=0)
        with pytest.raises(ConfigurationError):
            AiImpactConverter(kwh_per_inference=-0.001)
        with pytest.raises(ConfigurationError):
            AiImpactConverter(kwh_per_gpu_training_hour=math.inf)
        with pytest.raises(ConfigurationError):
            AiImpactConverter(water_per_kwh=math.nan)

    def test_non_finite_flow_rejected(self):
        from hydro_ai_impact.models.ai_impact_model import AiImpactConverter

        converter = AiImpactConverter()
        for flow in (math.nan, math.inf, -math.inf, 1e308):
            with pytest.raises(ValueError):
                converter.compute(flow)

    def test_model_constants_echoed(self):
        from hydro_ai_impact.models.ai_impact_model import AiImpactConverter

        result = AiImpactConverter(water_per_kwh=2.0).compute(1)
        assert result.model_constants.to_dict() == {
            "water_per_kwh": 2.0,
            "kwh_per_inference": 0.001,
            "kwh_per_gpu_training_hour": 1.2,
        }

    def test_explanation_uses_result_numbers(self):
        from hydro_ai_impact.models.ai_impact_model import AiImpactConverter

        result = AiImpactConverter().compute(10)
        assert result.explanation.startswith("10.00 ft³/s over 1 hour = 1,019,405 liters.")
        assert "471,946.67 GPU training hours" in result.explanation

    def test_compute_ai_impact_uses_settings(self):
        from hydro_ai_impact.models.ai_impact_model import compute_ai_impact
        from hydro_ai_impact.settings import EngineSettings

        result = compute_ai_impact(10, settings=EngineSettings(water_per_kwh=3.6))
        assert result.kwh_equivalent == pytest.approx(283168.0)

    def test_idempotent(self):
        from hydro_ai_impact.models.ai_impact_model import AiImpactConverter

        converter = AiImpactConverter()
        assert converter.compute(12.34, 1800) == converter.compute(12.34, 1800)


class TestOntology:
    """Tests for serialized object shapes."""

    def test_empty_water_data(self):
        from hydro_ai_impact.ontology.object_types import WaterData

        data = WaterData.empty("offline")
        assert data.latest is None
        assert data.daily_series == ()
        assert data.station_status.to_dict() == {
            "active": False,
            "last_record_date": None,
            "message": "offline",
        }

    def test_analytics_dict_excludes_series(self):
        from hydro_ai_impact.transforms.intelligence_engine import analyze

        result = analyze(_series([1, 2, 3]))
        assert "per_point_tags" not in result.analytics_dict()
        assert len(result.to_dict()["per_point_tags"]) == 3


class TestUtils:
    """Tests for shared time, geo and cache helpers."""

    def test_parse_usgs_date(self):
        from hydro_ai_impact.utils.time_utils import parse_usgs_date

        assert parse_usgs_date("2024-01-15") == date(2024, 1, 15)
        assert parse_usgs_date("2024-01-15T00:00:00Z") == date(2024, 1, 15)
        assert parse_usgs_date("yesterday") is None
        assert parse_usgs_date(None) is None

    def test_date_window(self):
        from hydro_ai_impact.utils.time_utils import date_window

        assert date_window(14, end=date(2024, 3, 1)) == ("2024-02-16", "2024-03-01")

    def test_state_lookup(self):
        from hydro_ai_impact.utils.geo_utils import state_abbr_to_name

        assert state_abbr_to_name("va") == "Virginia"
        assert state_abbr_to_name("ZZ") is None

    def test_feature_lat_lon_swaps_order(self):
        from hydro_ai_impact.utils.geo_utils import feature_lat_lon

        assert feature_lat_lon({"geometry": {"coordinates": [-77.1, 38.9]}}) == (38.9, -77.1)
        assert feature_lat_lon({"geometry": None}) is None

    def test_ttl_cache_expiry(self, monkeypatch):
        from hydro_ai_impact.utils import ttl_cache

        clock = [1000.0]
        monkeypatch.setattr(ttl_cache.time, "monotonic", lambda: clock[0])

        cache = ttl_cache.TTLCache(ttl_seconds=300)
        cache.set("k", "v")
        assert cache.get("k") == "v"

        clock[0] += 301
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_ttl_cache_disabled(self):
        from hydro_ai_impact.utils.ttl_cache import TTLCache

        cache = TTLCache(ttl_seconds=0)
        cache.set("k", "v")
        assert cache.get("k") is None
