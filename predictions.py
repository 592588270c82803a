# predictions.py
"""
Prediction logic for bridge openings.

Combines the decomposed bucket statistics with cascade links into an
opening probability, expected duration and confidence per bucket, and
looks up the prediction for a bridge at the current time.

Probability per bucket:
- Base: openings / number of days the hour occurred in the bridge's data
- Trend: +0.1 when the trend is positive, -0.1 otherwise
- Seasonal: seasonal component * 0.05
- Patterns: +0.15 weekend, -0.1 rush hour, +0.2 summer
- Holiday adjustment from decomposition
- Cascade: average strength * frequency * 0.2 of cascades into this slot

No historical match never fails: it returns a low-confidence default.
"""
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from loguru import logger

from models import AnalyticsBucket, CascadeLink, Observation, Prediction
from shared import calendar_key, format_hour, parse_datetime, resolve_time, weekday_name

DEFAULT_PROBABILITY = 0.1
DEFAULT_DURATION_MINUTES = 15.0
NO_DATA_REASONING = "No historical data available for this time"
TIME_FRAME = "next hour"

RECENT_TRIGGER_MINUTES = 30


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def days_in_span(observations: Iterable[Observation]) -> int:
    """
    Number of calendar days between the first and last opening, inclusive.

    Every hour of the day occurs once per day, so this is the number of
    possible slots for any hour. Returns 1 with no observations.
    """
    dates = [calendar_date(o.open_at) for o in observations]
    if not dates:
        return 1
    return (max(dates) - min(dates)).days + 1


def calendar_date(dt: datetime) -> date:
    return parse_datetime(dt).date()


def calculate_bucket_predictions(
    buckets: Iterable[AnalyticsBucket],
    observations: Sequence[Observation],
    links: Sequence[CascadeLink],
    current_time: Optional[datetime] = None
) -> None:
    """
    Fill probability, expected duration and confidence of each bucket in place.

    Buckets must already be decomposed and carry cascade fields.
    """
    current_time = resolve_time(current_time)

    by_bridge: Dict[int, List[Observation]] = {}
    for observation in observations:
        by_bridge.setdefault(observation.bridge_id, []).append(observation)
    span_by_bridge = {bridge_id: days_in_span(events) for bridge_id, events in by_bridge.items()}

    received: Dict[tuple, List[CascadeLink]] = {}
    for link in links:
        _, dow, hour = link.target_slot
        received.setdefault((link.target_bridge_id, dow, hour), []).append(link)

    count = 0
    for bucket in buckets:
        possible_slots = span_by_bridge.get(bucket.bridge_id, 1)
        slot_links = received.get((bucket.bridge_id, bucket.day_of_week, bucket.hour), [])
        predict_bucket(bucket, possible_slots, slot_links)
        bucket.last_calculated = current_time
        count += 1

    logger.info(f"Calculated predictions for {count} buckets")


def predict_bucket(bucket: AnalyticsBucket, possible_slots: int, slot_links: Sequence[CascadeLink]) -> None:
    base_probability = bucket.opening_count / max(possible_slots, 1)

    trend_adjustment = 0.1 if bucket.trend_component > 0 else -0.1
    seasonal_adjustment = bucket.seasonal_component * 0.05

    bucket.probability_of_opening = clamp01(
        base_probability
        + trend_adjustment
        + seasonal_adjustment
        + pattern_adjustment(bucket)
        + bucket.holiday_adjustment
        + cascade_adjustment(bucket, slot_links)
    )

    bucket.expected_duration = (
        bucket.average_minutes_per_opening
        * seasonal_duration_multiplier(bucket)
        * cascade_duration_multiplier(bucket)
    )

    bucket.confidence = clamp01((
        min(bucket.opening_count / 10.0, 1.0)
        + variability_confidence(bucket)
        + min(abs(bucket.seasonal_component) / 10.0, 1.0)
        + min((bucket.cascade_influence + bucket.cascade_susceptibility) / 2.0, 1.0)
    ) / 4.0)


def pattern_adjustment(bucket: AnalyticsBucket) -> float:
    adjustment = 0.0
    if bucket.is_weekend_pattern:
        adjustment += 0.15  # recreational boating on weekends
    if bucket.is_rush_hour_pattern:
        adjustment -= 0.1
    if bucket.is_summer_pattern:
        adjustment += 0.2
    return adjustment


def cascade_adjustment(bucket: AnalyticsBucket, slot_links: Sequence[CascadeLink]) -> float:
    """Average strength * frequency * 0.2 for cascades arriving in the bucket's slot."""
    if not slot_links:
        return 0.0
    average_strength = _mean([link.strength for link in slot_links])
    frequency = len(slot_links) / max(bucket.opening_count, 1)
    return average_strength * frequency * 0.2


def seasonal_duration_multiplier(bucket: AnalyticsBucket) -> float:
    multiplier = 1.0
    if bucket.is_weekend_pattern:
        multiplier *= 1.2
    if bucket.is_summer_pattern:
        multiplier *= 1.15
    if bucket.is_rush_hour_pattern:
        multiplier *= 0.9
    return multiplier


def cascade_duration_multiplier(bucket: AnalyticsBucket) -> float:
    # Influential bridges stay open longer, susceptible ones respond quickly
    if bucket.cascade_influence > 0.5:
        return 1.1 + bucket.cascade_influence * 0.2
    if bucket.cascade_susceptibility > 0.5:
        return 0.9 + bucket.cascade_susceptibility * 0.1
    return 1.0


def variability_confidence(bucket: AnalyticsBucket) -> float:
    if bucket.opening_count <= 1:
        return 0.0
    spread = bucket.longest_opening_minutes - bucket.shortest_opening_minutes
    ratio = spread / max(bucket.average_minutes_per_opening, 1.0)
    return max(0.0, 1.0 - ratio / 10.0)


def no_data_prediction(bridge_id: int, bridge_name: str = "") -> Prediction:
    return Prediction(
        bridge_id=bridge_id,
        bridge_name=bridge_name,
        probability=DEFAULT_PROBABILITY,
        expected_duration_minutes=DEFAULT_DURATION_MINUTES,
        confidence=0.0,
        reasoning=NO_DATA_REASONING,
        time_frame=TIME_FRAME,
        source="fallback",
    )


def get_current_prediction(
    bridge_id: int,
    buckets: Iterable[AnalyticsBucket],
    links: Sequence[CascadeLink] = (),
    recent_observations: Iterable[Observation] = (),
    current_time: Optional[datetime] = None,
    bridge_name: str = ""
) -> Prediction:
    """
    Prediction for a bridge at the current time.

    Uses the most confident bucket for this bridge's (month, day of week, hour)
    and boosts it when another bridge that usually triggers it opened within
    the last 30 minutes.

    Args:
        bridge_id: Bridge to predict
        buckets: Buckets with predictions already calculated
        links: Detected cascade links
        recent_observations: Latest openings across all bridges
        current_time: Current time (defaults to now, injectable for testing)

    Returns:
        Prediction, the low-confidence default when no bucket matches
    """
    current_time = resolve_time(current_time)

    _, month, dow, hour = calendar_key(current_time)
    matching = [
        b for b in buckets
        if b.bridge_id == bridge_id and b.month == month and b.day_of_week == dow and b.hour == hour
    ]
    if not matching:
        logger.debug(f"No historical bucket for bridge {bridge_id} at {weekday_name(dow)} {format_hour(hour)}")
        return no_data_prediction(bridge_id, bridge_name)

    best = max(matching, key=lambda b: b.confidence)

    window = timedelta(minutes=RECENT_TRIGGER_MINUTES)
    recent_triggers = [
        o for o in recent_observations
        if o.bridge_id != bridge_id and timedelta(0) <= current_time - o.open_at < window
    ]

    cascade_boost = 0.0
    for trigger in recent_triggers:
        relevant = [
            link for link in links
            if link.trigger_bridge_id == trigger.bridge_id
            and link.target_bridge_id == bridge_id
            and link.target_slot[1:] == (dow, hour)
        ]
        if relevant:
            cascade_boost = max(cascade_boost, _mean([link.strength for link in relevant]) * 0.3)

    return Prediction(
        bridge_id=bridge_id,
        bridge_name=bridge_name or best.bridge_name,
        probability=clamp01(best.probability_of_opening + cascade_boost),
        expected_duration_minutes=max(0.0, best.expected_duration),
        confidence=clamp01(best.confidence),
        reasoning=generate_reasoning(best, cascade_boost),
        time_frame=TIME_FRAME,
        source="analytics",
    )


def generate_reasoning(bucket: AnalyticsBucket, cascade_boost: float = 0.0) -> str:
    reasoning = (
        f"Based on {bucket.opening_count} historical openings on "
        f"{weekday_name(bucket.day_of_week)}s at {format_hour(bucket.hour)}"
    )

    if bucket.is_summer_pattern:
        reasoning += " (summer recreational pattern)"
    if bucket.is_weekend_pattern:
        reasoning += " (weekend pattern)"
    if bucket.is_rush_hour_pattern:
        reasoning += " (rush hour period)"
    if bucket.holiday_adjustment > 0:
        reasoning += f" (holiday adjustment +{int(round(bucket.holiday_adjustment * 100))}%)"
    if cascade_boost > 0:
        reasoning += " (cascade effect detected from recent bridge activity)"
    if bucket.cascade_influence > 0.3:
        reasoning += " (high cascade influence bridge)"
    if bucket.cascade_susceptibility > 0.3:
        reasoning += " (high cascade susceptibility)"

    return reasoning
