"""
AI Impact Conversion Model
==========================

Expresses a streamflow rate as the data center energy and compute that
the same volume of cooling water corresponds to.

Conversion pipeline (each stage feeds the next, order is fixed):
    1. ft³/s -> L/s                     (x 28.3168)
    2. L/s -> liters over the window    (x window_seconds)
    3. liters -> kWh                    (/ water_per_kwh)
    4. kWh -> AI inference requests     (floor(/ kwh_per_inference))
    5. kWh -> GPU training hours        (/ kwh_per_gpu_training_hour)

Constants (configurable via environment, see hydro_ai_impact.settings):
    WATER_PER_KWH              liters of cooling water per kWh (~1.8)
    KWH_PER_AI_INFERENCE       kWh per large-model inference (~0.001)
    KWH_PER_GPU_TRAINING_HOUR  kWh per A100-class GPU-hour (~1.2)

The model is pure arithmetic: no state beyond the three constants and no
rounding until the result boundary.
"""

import math
import numbers
from dataclasses import replace
from typing import Optional

from hydro_ai_impact.ontology.object_types import AiImpactResult, ModelConstants
from hydro_ai_impact.settings import ConfigurationError, EngineSettings
from hydro_ai_impact.utils.constants import AiImpactConfig, FlowUnits


class AiImpactConverter:
    """
    Converts flow rates into water, energy and compute equivalents.

    Holds only the three conversion constants, validated once at
    construction. Instances are immutable in practice and safe to share
    between threads.

    Example:
        converter = AiImpactConverter.from_settings(load_settings())
        result = converter.compute(flow_rate=10.0)
        result.kwh_equivalent  # 566336.0
    """

    def __init__(
        self,
        water_per_kwh: float = AiImpactConfig.WATER_PER_KWH,
        kwh_per_inference: float = AiImpactConfig.KWH_PER_INFERENCE,
        kwh_per_gpu_training_hour: float = AiImpactConfig.KWH_PER_GPU_TRAINING_HOUR,
    ):
        """
        Args:
            water_per_kwh: Liters of water per kWh of data center electricity
            kwh_per_inference: kWh consumed per AI inference request
            kwh_per_gpu_training_hour: kWh consumed per GPU training hour

        Raises:
            ConfigurationError: if any constant is not a finite positive number
        """
        for name, value in (
            ("water_per_kwh", water_per_kwh),
            ("kwh_per_inference", kwh_per_inference),
            ("kwh_per_gpu_training_hour", kwh_per_gpu_training_hour),
        ):
            if (
                isinstance(value, bool)
                or not isinstance(value, (int, float))
                or not math.isfinite(value)
                or not value > 0
            ):
                raise ConfigurationError(f"{name} must be a finite positive number, got {value!r}")

        self.constants = ModelConstants(
            water_per_kwh=water_per_kwh,
            kwh_per_inference=kwh_per_inference,
            kwh_per_gpu_training_hour=kwh_per_gpu_training_hour,
        )

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "AiImpactConverter":
        """Build a converter from the loaded process settings."""
        return cls(
            water_per_kwh=settings.water_per_kwh,
            kwh_per_inference=settings.kwh_per_ai_inference,
            kwh_per_gpu_training_hour=settings.kwh_per_gpu_training_hour,
        )

    def compute(
        self,
        flow_rate: float,
        window_seconds: int = AiImpactConfig.DEFAULT_WINDOW_SECONDS,
    ) -> AiImpactResult:
        """
        Compute AI sustainability equivalents for a streamflow value.

        Negative flow is passed through unmodified; callers that need
        physical validation must do it before calling.

        Args:
            flow_rate: Streamflow in cubic feet per second (ft³/s)
            window_seconds: Time window for the volume (default: 1 hour)

        Returns:
            AiImpactResult with presentation rounding applied

        Raises:
            ValueError: if window_seconds is not positive, or flow_rate is
                        not a finite number or too large to convert
        """
        if isinstance(window_seconds, bool) or not isinstance(window_seconds, int) or window_seconds <= 0:
            raise ValueError(f"window_seconds must be a positive integer, got {window_seconds!r}")
        if isinstance(flow_rate, bool) or not isinstance(flow_rate, numbers.Real) or not math.isfinite(flow_rate):
            raise ValueError(f"flow_rate must be a finite number, got {flow_rate!r}")

        constants = self.constants

        liters_per_second = flow_rate * FlowUnits.CFS_TO_LPS
        water_volume_liters = liters_per_second * window_seconds
        kwh_equivalent = water_volume_liters / constants.water_per_kwh
        inferences = kwh_equivalent / constants.kwh_per_inference
        gpu_hours_equivalent = kwh_equivalent / constants.kwh_per_gpu_training_hour

        if not all(math.isfinite(v) for v in (water_volume_liters, kwh_equivalent, inferences, gpu_hours_equivalent)):
            raise ValueError(f"flow_rate {flow_rate!r} is too large to convert")
        inference_equivalent = math.floor(inferences)

        result = AiImpactResult(
            water_volume_liters=int(_round_half_up(water_volume_liters, 0)),
            kwh_equivalent=_round_half_up(kwh_equivalent, 2),
            inference_equivalent=int(inference_equivalent),
            gpu_hours_equivalent=_round_half_up(gpu_hours_equivalent, 2),
            model_constants=constants,
        )
        return replace(result, explanation=explain_result(result, flow_rate, window_seconds))


def compute_ai_impact(
    flow_rate: float,
    window_seconds: int = AiImpactConfig.DEFAULT_WINDOW_SECONDS,
    settings: Optional[EngineSettings] = None,
) -> AiImpactResult:
    """Convenience wrapper: build a converter from settings and compute."""
    converter = AiImpactConverter.from_settings(settings or EngineSettings())
    return converter.compute(flow_rate, window_seconds)


def explain_result(result: AiImpactResult, flow_rate: float, window_seconds: int) -> str:
    """
    Render a one-paragraph explanation of an AI-impact result.

    Uses only the numbers already present on the result (plus the inputs
    that produced it), so the text can never disagree with the
    structured values.
    """
    constants = result.model_constants
    return (
        f"{flow_rate:.2f} ft³/s over {_describe_window(window_seconds)} = "
        f"{result.water_volume_liters:,} liters. "
        f"At {constants.water_per_kwh} L/kWh (data center cooling average), this equals "
        f"{result.kwh_equivalent:,.2f} kWh. "
        f"That powers ~{result.inference_equivalent:,} AI inferences "
        f"or {result.gpu_hours_equivalent:,.2f} GPU training hours."
    )


def _describe_window(window_seconds: int) -> str:
    """Human label for a window length, e.g. '1 hour', '2 hours', '90 seconds'."""
    if window_seconds % FlowUnits.SECONDS_PER_HOUR == 0:
        hours = window_seconds // FlowUnits.SECONDS_PER_HOUR
        return "1 hour" if hours == 1 else f"{hours} hours"
    if window_seconds % 60 == 0:
        minutes = window_seconds // 60
        return "1 minute" if minutes == 1 else f"{minutes} minutes"
    return "1 second" if window_seconds == 1 else f"{window_seconds} seconds"


def _round_half_up(value: float, decimals: int) -> float:
    """Round half toward +infinity at the given number of decimals."""
    factor = 10 ** decimals
    return math.floor(value * factor + 0.5) / factor
