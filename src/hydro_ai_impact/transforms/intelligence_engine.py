"""
Deterministic Intelligence Engine
=================================

The core analytics module that turns a station's daily streamflow series
into explainable indicators. Every number is a closed-form function of
the input; re-running the same formula on the same series reproduces it
exactly.

Algorithms:
    - Moving Average (7-day, 30-day): arithmetic mean of the most recent
      values, or of all values when fewer than the window exist
    - Volatility Index: population coefficient of variation (std / mean),
      capped at 2.0 and rounded to 3 decimals
    - Anomaly Detection (rule-based, on the live reading):
        current >= MA7 * 2.0  -> severe
        current >= MA7 * 1.5  -> moderate
    - Sustainability Score (0-100), base 100 minus:
        high volatility (> 0.5)          -20
        severe / moderate anomaly        -30 / -15
        latest below 10th percentile     -15
    - Per-point tagging: each day compared with the mean of the 7 days
      before it

The live anomaly check and the per-point tags answer different questions.
The live check compares one reading with the single 7-day average at the
end of the series; the tags compare every day with its own trailing
window. They may disagree on the last day and are kept separate.
"""

import logging
import math
import numbers
from typing import List, Optional, Sequence

import numpy as np

from hydro_ai_impact.ontology.object_types import (
    AnomalyClassification,
    AnomalySeverity,
    DailyValue,
    IntelligenceResult,
    PointTag,
)
from hydro_ai_impact.settings import EngineSettings
from hydro_ai_impact.utils.constants import IntelligenceConfig

logger = logging.getLogger(__name__)


# =============================================================================
# MAIN ANALYSIS
# =============================================================================

def analyze(
    series: Sequence[DailyValue],
    current_value: Optional[float] = None,
    settings: Optional[EngineSettings] = None,
) -> IntelligenceResult:
    """
    Run the full deterministic analysis over a daily series.

    Steps:
    1. Drop non-finite values
    2. Compute 7-day and 30-day moving averages
    3. Compute the volatility index over all retained values
    4. Classify the current reading against the 7-day average
    5. Score sustainability from volatility, anomaly and low flow
    6. Tag every point of the unfiltered input series against its trailing window

    Never raises on empty or malformed numeric input. The input sequence
    is not modified.

    Args:
        series: Date-ascending daily values (may be empty)
        current_value: Latest observation; falls back to the last retained
                       series value, or None when the series is empty too
        settings: Thresholds; defaults to EngineSettings()

    Returns:
        IntelligenceResult
    """
    settings = settings or EngineSettings()
    config = IntelligenceConfig

    values = finite_values(series)

    moving_average_7 = compute_moving_average(values, config.SHORT_WINDOW)
    moving_average_30 = compute_moving_average(values, config.LONG_WINDOW)
    volatility_index = compute_volatility_index(values)

    current = _as_finite(current_value)
    if current is None and values:
        current = values[-1]

    anomaly = detect_anomaly(current, moving_average_7, settings)
    sustainability_score = compute_sustainability_score(
        volatility_index, anomaly, values, settings
    )
    per_point_tags = tag_anomalies_in_series(series, config.SHORT_WINDOW, settings)

    dropped = len(series) - len(values)
    if dropped:
        logger.info(f"Dropped {dropped} non-finite values before analysis")

    return IntelligenceResult(
        moving_average_7=moving_average_7,
        moving_average_30=moving_average_30,
        volatility_index=volatility_index,
        anomaly=anomaly,
        sustainability_score=sustainability_score,
        per_point_tags=tuple(per_point_tags),
    )


def finite_values(series: Sequence[DailyValue]) -> List[float]:
    """Chronological values of the series with non-finite entries removed."""
    values = []
    for point in series:
        value = _as_finite(point.value)
        if value is not None:
            values.append(value)
    return values


# =============================================================================
# MOVING AVERAGES
# =============================================================================

def compute_moving_average(values: Sequence[float], window: int) -> Optional[float]:
    """
    Arithmetic mean of the last ``window`` values.

    With fewer than ``window`` values all of them are averaged; no padding.
    Returns None only for an empty input.
    """
    if not values:
        return None
    window_values = values[-window:]
    return sum(window_values) / len(window_values)


# =============================================================================
# VOLATILITY INDEX
# =============================================================================

def compute_volatility_index(values: Sequence[float]) -> Optional[float]:
    """
    Population coefficient of variation: std / mean.

    Requires at least two values and a finite, non-zero mean. Capped at
    VOLATILITY_CAP so near-zero-mean series stay bounded, then rounded.
    """
    config = IntelligenceConfig
    if len(values) < 2:
        return None

    arr = np.asarray(values, dtype=float)
    with np.errstate(over="ignore", invalid="ignore"):
        mean = float(arr.mean())
        std = float(arr.std(ddof=0))
    if mean == 0 or not math.isfinite(mean):
        return None

    cv = std / mean
    if not math.isfinite(cv):
        return None
    return _round_half_up(min(cv, config.VOLATILITY_CAP), config.VOLATILITY_DECIMALS)


# =============================================================================
# ANOMALY DETECTION
# =============================================================================

def detect_anomaly(
    current: Optional[float],
    moving_average_7: Optional[float],
    settings: Optional[EngineSettings] = None,
) -> AnomalyClassification:
    """
    Classify the current reading against the 7-day moving average.

    The severe tier is checked first, so a ratio exactly at the severe
    multiplier is severe. Both multipliers are inclusive lower bounds.
    """
    settings = settings or EngineSettings()

    if current is None or moving_average_7 is None or moving_average_7 == 0:
        return AnomalyClassification(
            detected=False,
            severity=AnomalySeverity.NONE,
            message="Insufficient data",
        )

    ratio = current / moving_average_7

    if ratio >= settings.anomaly_severe_multiplier:
        return _anomaly(ratio, AnomalySeverity.SEVERE, settings.anomaly_severe_multiplier)

    if ratio >= settings.anomaly_moderate_multiplier:
        return _anomaly(ratio, AnomalySeverity.MODERATE, settings.anomaly_moderate_multiplier)

    return AnomalyClassification(
        detected=False,
        severity=AnomalySeverity.NONE,
        message="Flow within normal range.",
        ratio=ratio,
    )


def _anomaly(ratio: float, severity: AnomalySeverity, threshold: float) -> AnomalyClassification:
    message = (
        f"Flow is {ratio:.1f}x the 7-day average, at or above the "
        f"{threshold}x {severity.value} threshold: {severity.value} anomaly detected."
    )
    return AnomalyClassification(
        detected=True,
        severity=severity,
        message=message,
        threshold=threshold,
        ratio=ratio,
    )


# =============================================================================
# SUSTAINABILITY SCORE
# =============================================================================

def compute_sustainability_score(
    volatility_index: Optional[float],
    anomaly: AnomalyClassification,
    values: Sequence[float],
    settings: Optional[EngineSettings] = None,
) -> int:
    """
    Score the current hydrological state on a 0-100 scale.

    Higher = more stable conditions. Deductions are additive and each
    applies at most once; the anomaly deductions are mutually exclusive.
    """
    settings = settings or EngineSettings()
    config = IntelligenceConfig
    score = config.SCORE_BASE

    if volatility_index is not None and volatility_index > settings.volatility_high_threshold:
        score -= config.HIGH_VOLATILITY_DEDUCTION

    if anomaly.severity is AnomalySeverity.SEVERE:
        score -= config.SEVERE_ANOMALY_DEDUCTION
    elif anomaly.severity is AnomalySeverity.MODERATE:
        score -= config.MODERATE_ANOMALY_DEDUCTION

    if _is_below_low_flow_percentile(values):
        score -= config.LOW_FLOW_DEDUCTION

    return max(config.SCORE_MIN, min(config.SCORE_MAX, score))


def _is_below_low_flow_percentile(values: Sequence[float]) -> bool:
    """
    Whether the latest chronological value is below the 10th percentile.

    The percentile is the sorted value at index floor(0.1 * count); this
    exact index rule is part of the score definition.
    """
    config = IntelligenceConfig
    if len(values) < config.LOW_FLOW_MIN_POINTS:
        return False
    ordered = sorted(values)
    p10 = ordered[math.floor(len(ordered) * config.LOW_FLOW_PERCENTILE)]
    return values[-1] < p10


# =============================================================================
# PER-POINT TAGGING
# =============================================================================

def tag_anomalies_in_series(
    series: Sequence[DailyValue],
    window: int = IntelligenceConfig.SHORT_WINDOW,
    settings: Optional[EngineSettings] = None,
) -> List[PointTag]:
    """
    Tag each point against the mean of the ``window`` points before it.

    Runs over the unfiltered input series so tags align 1:1 with the
    input. The first point has an empty window and is never tagged.
    """
    settings = settings or EngineSettings()
    tags = []

    for i, point in enumerate(series):
        window_values = [_as_float(p.value) for p in series[max(0, i - window):i]]
        mean = sum(window_values) / len(window_values) if window_values else None

        value = _as_float(point.value)
        ratio = value / mean if mean is not None and mean != 0 else None

        tags.append(PointTag(
            point=point,
            is_anomaly=ratio is not None and ratio >= settings.anomaly_moderate_multiplier,
            is_severe=ratio is not None and ratio >= settings.anomaly_severe_multiplier,
        ))

    return tags


# =============================================================================
# HELPERS
# =============================================================================

def _as_float(value) -> float:
    """Numeric value as float; anything else becomes NaN."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return math.nan
    try:
        return float(value)
    except OverflowError:
        return math.nan


def _as_finite(value) -> Optional[float]:
    """Numeric finite value as float, otherwise None."""
    if value is None:
        return None
    number = _as_float(value)
    return number if math.isfinite(number) else None


def _round_half_up(value: float, decimals: int) -> float:
    """Round half toward +infinity at the given number of decimals."""
    factor = 10 ** decimals
    return math.floor(value * factor + 0.5) / factor
