# seasonal.py
"""
Seasonal decomposition of bucketed bridge activity.

Splits each bridge's opening counts into trend, seasonal and residual
components and flags weekend, rush hour, summer and holiday patterns.
Buckets are updated in place and returned.
"""
from typing import Dict, Iterable, List

from loguru import logger

from models import AnalyticsBucket
from shared import is_weekend, is_rush_hour, is_summer
from stats_calculator import group_by_bridge

TREND_WINDOW = 24  # samples in the centered moving average
HOLIDAY_BOOST = 0.3


def decompose(buckets: Iterable[AnalyticsBucket]) -> List[AnalyticsBucket]:
    """
    Decompose every bridge's bucket series.

    Args:
        buckets: Aggregated buckets for any number of bridges

    Returns:
        The same buckets, grouped per bridge and sorted by time key
    """
    decomposed = []
    for bridge_id, bridge_buckets in sorted(group_by_bridge(buckets).items()):
        decomposed.extend(decompose_bridge(bridge_buckets))
        logger.debug(f"Decomposed {len(bridge_buckets)} buckets for bridge {bridge_id}")
    return decomposed


def decompose_bridge(buckets: List[AnalyticsBucket]) -> List[AnalyticsBucket]:
    """Decompose a single bridge's buckets (trend, seasonal, residual, flags)."""
    series = sorted(buckets, key=lambda b: (b.year, b.month, b.day_of_week, b.hour))
    if not series:
        return series

    for index, bucket in enumerate(series):
        bucket.trend_component = calculate_trend(series, index, TREND_WINDOW)

    apply_seasonal_components(series)

    for bucket in series:
        expected = bucket.trend_component + bucket.seasonal_component
        bucket.residual_component = bucket.opening_count - expected

    detect_pattern_types(series)
    return series


def calculate_trend(series: List[AnalyticsBucket], index: int, window: int = TREND_WINDOW) -> float:
    """Centered moving average of opening counts, clamped at the series ends."""
    half = window // 2
    start = max(0, index - half)
    end = min(len(series) - 1, index + half)
    window_data = series[start:end + 1]
    return sum(b.opening_count for b in window_data) / len(window_data)


def _group_means(series: List[AnalyticsBucket], attribute: str) -> Dict[int, float]:
    groups: Dict[int, List[int]] = {}
    for bucket in series:
        groups.setdefault(getattr(bucket, attribute), []).append(bucket.opening_count)
    return {key: sum(counts) / len(counts) for key, counts in groups.items()}


def _mean(values) -> float:
    values = list(values)
    return sum(values) / len(values) if values else 0.0


def apply_seasonal_components(series: List[AnalyticsBucket]) -> None:
    """
    Weekly, monthly and hourly seasonality.

    Each effect is the group mean for the bucket's key minus the mean of all
    group means for that key; the seasonal component is the sum of the three.
    """
    weekly = _group_means(series, 'day_of_week')
    monthly = _group_means(series, 'month')
    hourly = _group_means(series, 'hour')

    overall_weekly = _mean(weekly.values())
    overall_monthly = _mean(monthly.values())
    overall_hourly = _mean(hourly.values())

    for bucket in series:
        bucket.weekly_seasonality = weekly.get(bucket.day_of_week, overall_weekly)
        bucket.monthly_seasonality = monthly.get(bucket.month, overall_monthly)
        bucket.hourly_seasonality = hourly.get(bucket.hour, overall_hourly)
        bucket.seasonal_component = (
            (bucket.weekly_seasonality - overall_weekly)
            + (bucket.monthly_seasonality - overall_monthly)
            + (bucket.hourly_seasonality - overall_hourly)
        )


def holiday_adjustment(month: int, day_of_week: int) -> float:
    """
    Holiday boost for recreational boating.

    Calendar-naive: all of July, plus Mondays in May (Memorial Day) and
    September (Labor Day).
    """
    if month == 7 or (month == 5 and day_of_week == 2) or (month == 9 and day_of_week == 2):
        return HOLIDAY_BOOST
    return 0.0


def detect_pattern_types(series: Iterable[AnalyticsBucket]) -> None:
    for bucket in series:
        bucket.is_weekend_pattern = is_weekend(bucket.day_of_week)
        bucket.is_rush_hour_pattern = is_rush_hour(bucket.day_of_week, bucket.hour)
        bucket.is_summer_pattern = is_summer(bucket.month)
        bucket.holiday_adjustment = holiday_adjustment(bucket.month, bucket.day_of_week)


def generate_seasonal_insights(bridge_id: int, buckets: Iterable[AnalyticsBucket]) -> List[str]:
    """
    Describe seasonal patterns for a bridge from its bucket probabilities.

    Expects buckets that already went through the prediction engine.
    """
    bridge_buckets = [b for b in buckets if b.bridge_id == bridge_id]
    insights = []

    weekend = [b.probability_of_opening for b in bridge_buckets if b.is_weekend_pattern]
    weekday = [b.probability_of_opening for b in bridge_buckets if not b.is_weekend_pattern]
    if weekend and weekday:
        weekend_avg = _mean(weekend)
        weekday_avg = _mean(weekday)
        if weekday_avg > 0 and weekend_avg > weekday_avg * 1.2:
            percent = int((weekend_avg / weekday_avg - 1) * 100)
            insights.append(f"Weekend openings are {percent}% more frequent than weekdays")

    summer = [b.probability_of_opening for b in bridge_buckets if b.is_summer_pattern]
    other = [b.probability_of_opening for b in bridge_buckets if not b.is_summer_pattern]
    if summer and other:
        summer_avg = _mean(summer)
        other_avg = _mean(other)
        if other_avg > 0 and summer_avg > other_avg * 1.1:
            percent = int((summer_avg / other_avg - 1) * 100)
            insights.append(f"Summer months show {percent}% increase in bridge activity")

    rush = [b.probability_of_opening for b in bridge_buckets if b.is_rush_hour_pattern]
    if rush and _mean(rush) < 0.1:
        insights.append("Bridge activity is significantly reduced during rush hours")

    return insights
