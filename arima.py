# arima.py
"""
ARIMA forecasting of bridge openings.

Builds a per-bridge ARIMA(p,1,q) model over fixed-width activity windows.
Model size and training algorithm depend on a compute tier detected from an
injected CapabilityDescriptor:

    tier      order    max series  min samples  window  AR training
    basic     (1,1,1)  24          12           60 min  lag correlation * 0.3
    moderate  (2,1,2)  72          24           60 min  Yule-Walker
    advanced  (3,1,3)  168         48           30 min  gradient descent

Below the tier's minimum sample count a frequency estimate over the last
10 openings is returned instead of a trained model. Forecasting never raises.
"""
import math
import os
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from config import FORECAST_TIER
from models import (
    AnalyticsBucket, ARIMAForecast, ARIMAModel, CapabilityDescriptor, Observation, Prediction
)
from predictions import clamp01, no_data_prediction
from shared import calendar_key, is_weekend, resolve_time

TIER_CONFIGS: Dict[str, Dict] = {
    'basic': {
        'order': (1, 1, 1),
        'max_series_length': 24,
        'min_training_samples': 12,
        'window_minutes': 60,
        'ar_limit': 0.5,
    },
    'moderate': {
        'order': (2, 1, 2),
        'max_series_length': 72,
        'min_training_samples': 24,
        'window_minutes': 60,
        'ar_limit': 0.8,
    },
    'advanced': {
        'order': (3, 1, 3),
        'max_series_length': 168,
        'min_training_samples': 48,
        'window_minutes': 30,
        'ar_limit': 0.9,
    },
}

GRADIENT_ITERATIONS = 50
LEARNING_RATE = 0.01
MA_ITERATIONS = 20
BASIC_AR_SCALE = 0.3
MAX_HOLDOUT = 10
FALLBACK_OBSERVATIONS = 10
DEFAULT_DURATION_MINUTES = 15.0

# Series point = COUNT_WEIGHT * normalized count + DURATION_WEIGHT * normalized minutes open
COUNT_WEIGHT = 0.6
DURATION_WEIGHT = 0.4


def detect_tier(capability: Optional[CapabilityDescriptor] = None) -> str:
    """
    Map compute capability to a forecast tier.

    With no descriptor, FORECAST_TIER from config wins, otherwise the local
    CPU count is used.
    """
    if capability is None:
        if FORECAST_TIER:
            return FORECAST_TIER
        capability = CapabilityDescriptor(core_count=os.cpu_count() or 1)

    if capability.core_count >= 16 or capability.throughput_tops >= 15:
        return 'advanced'
    if capability.core_count >= 8 or capability.throughput_tops >= 5:
        return 'moderate'
    return 'basic'


def build_series(
    observations: Sequence[Observation],
    window_minutes: int,
    max_length: int
) -> List[float]:
    """
    Activity series over fixed-width windows spanning the observed range.

    Each point blends the window's opening count and total minutes open,
    both normalized by their maximum over the kept windows, clamped to [0, 1].
    Only the last max_length windows are kept.
    """
    if not observations:
        return []

    events = sorted(observations, key=lambda o: o.open_at)
    start = events[0].open_at
    width = timedelta(minutes=window_minutes)
    window_count = int((events[-1].open_at - start) / width) + 1
    first_kept = max(0, window_count - max_length)

    counts = [0] * (window_count - first_kept)
    minutes = [0.0] * (window_count - first_kept)
    for event in events:
        index = int((event.open_at - start) / width) - first_kept
        if index < 0:
            continue
        counts[index] += 1
        minutes[index] += event.minutes_open

    max_count = max(counts) or 1
    max_minutes = max(minutes) or 1.0
    return [
        clamp01(COUNT_WEIGHT * c / max_count + DURATION_WEIGHT * m / max_minutes)
        for c, m in zip(counts, minutes)
    ]


def autocorrelation(x: np.ndarray, lag: int) -> float:
    if lag >= len(x):
        return 0.0
    centered = x - x.mean()
    denominator = float(np.dot(centered, centered))
    if denominator == 0:
        return 0.0
    return float(np.dot(centered[lag:], centered[:len(x) - lag])) / denominator


def _lag_matrix(x: np.ndarray, p: int) -> Tuple[np.ndarray, np.ndarray]:
    """Design matrix of lags 1..p and the matching targets."""
    columns = [x[p - k:len(x) - k] for k in range(1, p + 1)]
    return np.column_stack(columns), x[p:]


def train_ar_lag_correlation(x: np.ndarray, p: int, limit: float) -> np.ndarray:
    phi = np.array([BASIC_AR_SCALE * autocorrelation(x, k) for k in range(1, p + 1)])
    return np.clip(phi, -limit, limit)


def train_ar_yule_walker(x: np.ndarray, p: int, limit: float) -> np.ndarray:
    r = [autocorrelation(x, k) for k in range(p + 1)]
    r[0] = 1.0
    matrix = np.array([[r[abs(i - j)] for j in range(p)] for i in range(p)])
    try:
        phi = np.linalg.solve(matrix, np.array(r[1:]))
    except np.linalg.LinAlgError:
        logger.warning("Singular Yule-Walker system, using zero AR coefficients")
        phi = np.zeros(p)
    return np.clip(np.nan_to_num(phi), -limit, limit)


def train_ar_gradient_descent(x: np.ndarray, p: int, limit: float) -> Tuple[np.ndarray, float]:
    """Minimize one-step squared error. Returns (phi, intercept)."""
    phi = np.zeros(p)
    intercept = 0.0
    if len(x) <= p:
        return phi, intercept

    design, target = _lag_matrix(x, p)
    for _ in range(GRADIENT_ITERATIONS):
        error = intercept + design @ phi - target
        phi = phi - LEARNING_RATE * 2.0 * (design.T @ error) / len(target)
        intercept -= LEARNING_RATE * 2.0 * float(error.mean())
        phi = np.clip(phi, -limit, limit)
    return phi, float(intercept)


def residuals(x: np.ndarray, phi: np.ndarray, theta: np.ndarray, intercept: float) -> np.ndarray:
    errors = np.zeros(len(x))
    for t in range(len(x)):
        prediction = intercept
        for k, coefficient in enumerate(phi, start=1):
            if t - k >= 0:
                prediction += coefficient * x[t - k]
        for j, coefficient in enumerate(theta, start=1):
            if t - j >= 0:
                prediction += coefficient * errors[t - j]
        errors[t] = x[t] - prediction
    return errors


def train_ma_iterative(x: np.ndarray, phi: np.ndarray, intercept: float, q: int, limit: float) -> np.ndarray:
    """Re-estimate MA coefficients from the residual autocorrelation."""
    theta = np.zeros(q)
    for _ in range(MA_ITERATIONS):
        errors = residuals(x, phi, theta, intercept)
        denominator = float(np.dot(errors, errors))
        if denominator == 0:
            break
        theta = np.array([
            float(np.dot(errors[j:], errors[:len(errors) - j])) / denominator if j < len(errors) else 0.0
            for j in range(1, q + 1)
        ])
        theta = np.clip(np.nan_to_num(theta), -limit, limit)
    return theta


def ma_decreasing_weights(q: int) -> np.ndarray:
    return np.array([0.3 / j for j in range(1, q + 1)])


def fit(series: Sequence[float], tier: str) -> Dict:
    """Fit ARIMA(p,1,q) coefficients for the tier on a series."""
    config = TIER_CONFIGS[tier]
    p, _, q = config['order']
    limit = config['ar_limit']
    x = np.diff(np.asarray(series, dtype=float))

    if tier == 'advanced':
        phi, intercept = train_ar_gradient_descent(x, p, limit)
        theta = train_ma_iterative(x, phi, intercept, q, limit)
    else:
        if tier == 'moderate':
            phi = train_ar_yule_walker(x, p, limit)
        else:
            phi = train_ar_lag_correlation(x, p, limit)
        mean = float(x.mean()) if len(x) else 0.0
        intercept = mean * (1.0 - float(phi.sum()))
        theta = ma_decreasing_weights(q)

    return {'phi': phi, 'theta': theta, 'intercept': intercept}


def predict_next(series: Sequence[float], params: Dict) -> float:
    """One-step-ahead forecast of the next series value."""
    y = np.asarray(series, dtype=float)
    if len(y) < 2:
        return clamp01(float(y[-1])) if len(y) else 0.0

    x = np.diff(y)
    phi, theta, intercept = params['phi'], params['theta'], params['intercept']
    errors = residuals(x, phi, theta, intercept)

    next_diff = intercept
    for k, coefficient in enumerate(phi, start=1):
        if len(x) - k >= 0:
            next_diff += coefficient * x[len(x) - k]
    for j, coefficient in enumerate(theta, start=1):
        if len(errors) - j >= 0:
            next_diff += coefficient * errors[len(errors) - j]

    value = float(np.nan_to_num(y[-1] + next_diff))
    return clamp01(value)


def evaluate(series: Sequence[float], tier: str) -> Tuple[float, float]:
    """
    Hold out the last min(10, n // 4) points and forecast them one step ahead.

    Returns:
        (accuracy, rmse) where accuracy blends 1 - RMSE with direction agreement,
        floored at 0.5
    """
    n = len(series)
    holdout = min(MAX_HOLDOUT, n // 4)
    if holdout == 0:
        return 0.5, 0.0

    params = fit(series[:n - holdout], tier)
    squared_errors = []
    agreements = 0
    for i in range(n - holdout, n):
        predicted = predict_next(series[:i], params)
        actual = series[i]
        previous = series[i - 1]
        squared_errors.append((predicted - actual) ** 2)
        if np.sign(predicted - previous) == np.sign(actual - previous):
            agreements += 1

    rmse = math.sqrt(sum(squared_errors) / holdout)
    direction = agreements / holdout
    accuracy = max(0.5, ((1.0 - min(1.0, rmse)) + direction) / 2.0)
    return min(1.0, accuracy), rmse


def hour_factor(hour: int) -> float:
    if 7 <= hour <= 9:
        return 0.8  # morning rush
    if 10 <= hour <= 15:
        return 1.2  # midday
    if 16 <= hour <= 18:
        return 0.9  # evening rush
    if 19 <= hour <= 22:
        return 1.1  # evening leisure
    return 0.6  # night


def weekday_factor(day_of_week: int) -> float:
    return 1.3 if is_weekend(day_of_week) else 0.9


def _average_duration(observations: Sequence[Observation]) -> float:
    recent = sorted(observations, key=lambda o: o.open_at)[-FALLBACK_OBSERVATIONS:]
    durations = [o.minutes_open for o in recent if o.minutes_open > 0]
    if not durations:
        return DEFAULT_DURATION_MINUTES
    return sum(durations) / len(durations)


class ARIMAForecaster:
    """Per-bridge ARIMA forecaster sized to the available compute."""

    def __init__(self, capability: Optional[CapabilityDescriptor] = None):
        self.tier = detect_tier(capability)
        self.config = TIER_CONFIGS[self.tier]

    @property
    def min_training_samples(self) -> int:
        return self.config['min_training_samples']

    def forecast(
        self,
        bridge_id: int,
        observations: Iterable[Observation],
        buckets: Iterable[AnalyticsBucket] = (),
        current_time: Optional[datetime] = None
    ) -> ARIMAForecast:
        """
        Forecast the opening probability of a bridge for the next hour.

        Args:
            bridge_id: Bridge to forecast
            observations: Openings (any bridges, filtered here)
            buckets: Decomposed buckets, used for the seasonal nudge
            current_time: Current time (defaults to now, injectable for testing)

        Returns:
            ARIMAForecast with the trained model, or the frequency fallback
        """
        current_time = resolve_time(current_time)

        events = sorted((o for o in observations if o.bridge_id == bridge_id), key=lambda o: o.open_at)
        series = build_series(events, self.config['window_minutes'], self.config['max_series_length'])
        samples = min(len(events), len(series))

        if samples < self.min_training_samples:
            logger.info(
                f"Bridge {bridge_id}: {samples} samples < {self.min_training_samples} "
                f"({self.tier} tier), using frequency fallback"
            )
            return self.frequency_fallback(bridge_id, events)

        accuracy, rmse = evaluate(series, self.tier)
        params = fit(series, self.tier)
        model = ARIMAModel(
            bridge_id=bridge_id,
            tier=self.tier,
            order=self.config['order'],
            ar_coefficients=[float(v) for v in params['phi']],
            ma_coefficients=[float(v) for v in params['theta']],
            intercept=float(params['intercept']),
            training_sample_size=len(series),
            accuracy=accuracy,
            rmse=rmse,
            trained_at=current_time,
        )

        raw = predict_next(series, params)
        probability = clamp01(self.adjust(raw, series, bridge_id, buckets, current_time))
        confidence = clamp01(accuracy * min(1.0, len(series) / self.config['max_series_length']))

        logger.info(
            f"Bridge {bridge_id}: {model.config_text} on {len(series)} windows, "
            f"accuracy {accuracy:.2f}, rmse {rmse:.3f}, probability {probability:.2f}"
        )

        prediction = Prediction(
            bridge_id=bridge_id,
            bridge_name=events[-1].bridge_name,
            probability=probability,
            expected_duration_minutes=_average_duration(events),
            confidence=confidence,
            reasoning=(
                f"{model.config_text} forecast from {len(series)} "
                f"{self.config['window_minutes']}-minute windows ({self.tier} tier, "
                f"{int(accuracy * 100)}% accuracy)"
            ),
            source="arima",
        )
        return ARIMAForecast(prediction=prediction, model=model, used_fallback=False, tier=self.tier)

    def adjust(
        self,
        raw: float,
        series: Sequence[float],
        bridge_id: int,
        buckets: Iterable[AnalyticsBucket],
        current_time: datetime
    ) -> float:
        """Apply time-of-day, weekday, seasonal and recent-activity adjustments."""
        _, month, dow, hour = calendar_key(current_time)
        value = raw * hour_factor(hour) * weekday_factor(dow)

        matching = [
            b for b in buckets
            if b.bridge_id == bridge_id and b.month == month and b.day_of_week == dow and b.hour == hour
        ]
        if matching:
            value += max(matching, key=lambda b: b.confidence).seasonal_component * 0.05

        recent = list(series[-3:])
        if recent and sum(recent) / len(recent) > 0.5:
            value += 0.1

        return value

    def frequency_fallback(
        self,
        bridge_id: int,
        events: Sequence[Observation]
    ) -> ARIMAForecast:
        """Openings per hour over the last 10 observations (span at least a day)."""
        if not events:
            return ARIMAForecast(prediction=no_data_prediction(bridge_id), used_fallback=True, tier=self.tier)

        recent = list(events)[-FALLBACK_OBSERVATIONS:]
        span_hours = (recent[-1].open_at - recent[0].open_at).total_seconds() / 3600
        rate = len(recent) / max(24.0, span_hours)

        prediction = Prediction(
            bridge_id=bridge_id,
            bridge_name=recent[-1].bridge_name,
            probability=clamp01(rate),
            expected_duration_minutes=_average_duration(recent),
            confidence=clamp01(0.3 * len(recent) / FALLBACK_OBSERVATIONS),
            reasoning=(
                f"Frequency estimate from the last {len(recent)} openings "
                f"(ARIMA needs {self.min_training_samples} samples)"
            ),
            source="fallback",
        )
        return ARIMAForecast(prediction=prediction, used_fallback=True, tier=self.tier)
