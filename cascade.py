# cascade.py
"""
Cascade detection between bridges.

A cascade is one bridge closing and another bridge opening shortly after.
Pairwise matching is O(bridges² · events²), so detection runs on a bounded
sample:
- Datasets above CASCADE_LARGE_DATASET keep only the most recent
  CASCADE_SAMPLE_SIZE observations from the CASCADE_TOP_BRIDGES busiest bridges
- At most CASCADE_MAX_PAIRS bridge pairs (busiest first), both directions
- At most CASCADE_MAX_EVENTS_PER_BRIDGE recent observations per side of a pair
- At most CASCADE_MAX_TARGETS_PER_TRIGGER candidate targets per trigger

These bounds trade recall for a hard time budget.
"""
import time
from datetime import datetime, timedelta
from itertools import combinations
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from config import (
    CASCADE_WINDOW_MINUTES, CASCADE_LARGE_DATASET, CASCADE_SAMPLE_SIZE,
    CASCADE_TOP_BRIDGES, CASCADE_MAX_PAIRS, CASCADE_MAX_EVENTS_PER_BRIDGE,
    CASCADE_MAX_TARGETS_PER_TRIGGER
)
from models import AnalyticsBucket, CascadeAlert, CascadeLink, Observation
from shared import calendar_key, resolve_time

MIN_CASCADE_STRENGTH = 0.4
ALERT_LOOKBACK_MINUTES = 30
ALERT_HORIZON_MINUTES = 15

# Strength weights
TEMPORAL_WEIGHT = 0.4
DURATION_WEIGHT = 0.3
PATTERN_WEIGHT = 0.3


def detect_cascades(observations: Sequence[Observation]) -> List[CascadeLink]:
    """
    Find cascade links across all bridges.

    Args:
        observations: Raw openings for any number of bridges

    Returns:
        List of CascadeLink with strength >= 0.4
    """
    start = time.monotonic()
    observations = list(observations)

    if len(observations) > CASCADE_LARGE_DATASET:
        logger.info(f"Large dataset ({len(observations)} observations) - sampling for cascade detection")
        observations = sample_recent_active(observations)

    by_bridge = _group_sorted(observations)
    bridge_ids = sorted(by_bridge, key=lambda bid: (-len(by_bridge[bid]), bid))

    links: List[CascadeLink] = []
    pair_count = 0
    for first, second in combinations(bridge_ids, 2):
        if pair_count >= CASCADE_MAX_PAIRS:
            logger.info(f"Reached cascade pair limit ({CASCADE_MAX_PAIRS}), skipping remaining pairs")
            break
        links.extend(detect_pairwise_cascades(by_bridge[first], by_bridge[second]))
        links.extend(detect_pairwise_cascades(by_bridge[second], by_bridge[first]))
        pair_count += 1

    elapsed = time.monotonic() - start
    logger.info(f"Cascade detection: {len(links)} cascades across {pair_count} bridge pairs in {elapsed:.2f}s")
    return links


def sample_recent_active(observations: Sequence[Observation]) -> List[Observation]:
    """Most recent CASCADE_SAMPLE_SIZE observations, limited to the busiest bridges among them."""
    recent = sorted(observations, key=lambda o: o.open_at, reverse=True)[:CASCADE_SAMPLE_SIZE]

    counts: Dict[int, int] = {}
    for observation in recent:
        counts[observation.bridge_id] = counts.get(observation.bridge_id, 0) + 1
    busiest = sorted(counts, key=lambda bid: (-counts[bid], bid))[:CASCADE_TOP_BRIDGES]
    top = set(busiest)

    sampled = [o for o in recent if o.bridge_id in top]
    logger.info(f"Focusing on top {len(top)} bridges with {len(sampled)} recent observations")
    return sampled


def _group_sorted(observations: Iterable[Observation]) -> Dict[int, List[Observation]]:
    groups: Dict[int, List[Observation]] = {}
    for observation in observations:
        groups.setdefault(observation.bridge_id, []).append(observation)
    for bridge_events in groups.values():
        bridge_events.sort(key=lambda o: o.open_at)
    return groups


def detect_pairwise_cascades(
    trigger_events: Sequence[Observation],
    target_events: Sequence[Observation]
) -> List[CascadeLink]:
    """
    Cascades from one bridge (trigger) to another (target).

    Both sequences must be sorted by open_at. Only triggers with a known
    completion time are considered.
    """
    if not trigger_events or not target_events:
        return []

    triggers = list(trigger_events)[-CASCADE_MAX_EVENTS_PER_BRIDGE:]
    targets = list(target_events)[-CASCADE_MAX_EVENTS_PER_BRIDGE:]
    window = timedelta(minutes=CASCADE_WINDOW_MINUTES)

    links = []
    for trigger in triggers:
        trigger_at = trigger.completed_at
        if trigger_at is None:
            continue
        window_end = trigger_at + window

        candidates = [t for t in targets if trigger_at < t.open_at <= window_end]
        for target in candidates[:CASCADE_MAX_TARGETS_PER_TRIGGER]:
            link = analyze_potential_cascade(trigger, trigger_at, target)
            if link is not None:
                links.append(link)

    return links


def analyze_potential_cascade(
    trigger: Observation,
    trigger_at: datetime,
    target: Observation
) -> Optional[CascadeLink]:
    """Score one trigger/target pair. Returns None below MIN_CASCADE_STRENGTH."""
    delay_minutes = (target.open_at - trigger_at).total_seconds() / 60
    if delay_minutes <= 0:
        return None

    strength = (
        temporal_factor(delay_minutes) * TEMPORAL_WEIGHT
        + duration_correlation(trigger.minutes_open, target.minutes_open) * DURATION_WEIGHT
        + pattern_consistency(trigger.open_at, target.open_at) * PATTERN_WEIGHT
    )
    strength = min(1.0, max(0.0, strength))
    if strength < MIN_CASCADE_STRENGTH:
        return None

    return CascadeLink(
        trigger_bridge_id=trigger.bridge_id,
        trigger_bridge_name=trigger.bridge_name,
        target_bridge_id=target.bridge_id,
        target_bridge_name=target.bridge_name,
        trigger_open_at=trigger.open_at,
        trigger_at=trigger_at,
        target_at=target.open_at,
        delay_minutes=delay_minutes,
        trigger_duration=trigger.minutes_open,
        target_duration=target.minutes_open,
        strength=strength,
        cascade_type=cascade_type(delay_minutes),
    )


def temporal_factor(delay_minutes: float) -> float:
    """Closer in time = stronger."""
    return max(0.0, 1.0 - delay_minutes / CASCADE_WINDOW_MINUTES)


def duration_correlation(trigger_duration: float, target_duration: float) -> float:
    """Similarity of durations normalized to a 60 minute scale."""
    normalized_trigger = min(max(trigger_duration / 60.0, 0.0), 1.0)
    normalized_target = min(max(target_duration / 60.0, 0.0), 1.0)
    return max(0.0, 1.0 - abs(normalized_trigger - normalized_target))


def pattern_consistency(trigger_open_at: datetime, target_at: datetime) -> float:
    """Half for the same weekday, half scaled by hour distance (zero past 2 hours)."""
    _, _, trigger_day, trigger_hour = calendar_key(trigger_open_at)
    _, _, target_day, target_hour = calendar_key(target_at)

    consistency = 0.0
    if trigger_day == target_day:
        consistency += 0.5
    hour_difference = abs(trigger_hour - target_hour)
    consistency += 0.5 * max(0.0, 1.0 - hour_difference / 2.0)
    return consistency


def cascade_type(delay_minutes: float) -> str:
    if delay_minutes < 5:
        return "immediate"
    if delay_minutes < 15:
        return "short-term"
    if delay_minutes < 30:
        return "medium-term"
    return "delayed"


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _most_frequent(links: List[CascadeLink], key) -> Tuple[object, List[CascadeLink]]:
    """Most common key among links and the links sharing it (ties go to the smallest key)."""
    groups: Dict[object, List[CascadeLink]] = {}
    for link in links:
        groups.setdefault(key(link), []).append(link)
    best = min(groups, key=lambda k: (-len(groups[k]), k))
    return best, groups[best]


def apply_cascade_analysis(buckets: Iterable[AnalyticsBucket], links: Sequence[CascadeLink]) -> None:
    """
    Fill the cascade fields of each bucket in place.

    Influence looks at links the bridge triggered from openings in the
    bucket's (day of week, hour) slot; susceptibility at links it received
    in that slot.
    """
    triggered_by_slot: Dict[Tuple[int, int, int], List[CascadeLink]] = {}
    received_by_slot: Dict[Tuple[int, int, int], List[CascadeLink]] = {}
    for link in links:
        _, trigger_dow, trigger_hour = link.trigger_slot
        _, target_dow, target_hour = link.target_slot
        triggered_by_slot.setdefault((link.trigger_bridge_id, trigger_dow, trigger_hour), []).append(link)
        received_by_slot.setdefault((link.target_bridge_id, target_dow, target_hour), []).append(link)

    for bucket in buckets:
        slot = (bucket.bridge_id, bucket.day_of_week, bucket.hour)

        triggered = triggered_by_slot.get(slot, [])
        if triggered:
            bucket.cascade_influence = _mean([link.strength for link in triggered])
            bucket.cascade_probability = min(1.0, len(triggered) / max(bucket.opening_count, 1))
            target_id, target_links = _most_frequent(triggered, lambda link: link.target_bridge_id)
            bucket.primary_cascade_target = target_id
            bucket.cascade_delay = _mean([link.delay_minutes for link in target_links])

        received = received_by_slot.get(slot, [])
        if received:
            bucket.cascade_susceptibility = _mean([link.strength for link in received])


def generate_cascade_insights(bridge_id: int, links: Sequence[CascadeLink]) -> List[str]:
    """Human readable cascade facts for one bridge."""
    insights = []
    triggered = [link for link in links if link.trigger_bridge_id == bridge_id]
    received = [link for link in links if link.target_bridge_id == bridge_id]

    if triggered:
        if _mean([link.strength for link in triggered]) > 0.5:
            insights.append("High cascade influence bridge - frequently triggers other bridge openings")
        target_name, target_links = _most_frequent(triggered, lambda link: link.target_bridge_name)
        insights.append(f"Most frequently triggers {target_name} ({len(target_links)} cascade events)")
        typical_delay = round(_mean([link.delay_minutes for link in target_links]))
        insights.append(f"Triggers {target_name} within {typical_delay} min")

    if received:
        if _mean([link.strength for link in received]) > 0.5:
            insights.append("High cascade susceptibility - often opens in response to other bridges")
        trigger_name, trigger_links = _most_frequent(received, lambda link: link.trigger_bridge_name)
        insights.append(f"Most frequently triggered by {trigger_name} ({len(trigger_links)} cascade events)")

    immediate = [link for link in triggered if link.cascade_type == "immediate"]
    if triggered and len(immediate) > len(triggered) / 2:
        insights.append("Tends to trigger immediate cascade responses (< 5 minutes)")

    return insights


def get_cascade_alerts(
    recent_observations: Iterable[Observation],
    links: Sequence[CascadeLink],
    current_time: Optional[datetime] = None
) -> List[CascadeAlert]:
    """
    Project expected cascade openings from openings that just finished.

    Only completed observations opened within the last 30 minutes count as
    triggers. A target is alerted when its expected opening (trigger completion
    plus the mean observed delay) falls within the next 15 minutes.

    Returns:
        Alerts sorted by expected time
    """
    current_time = resolve_time(current_time)

    pair_links: Dict[Tuple[int, int], List[CascadeLink]] = {}
    for link in links:
        if link.strength > MIN_CASCADE_STRENGTH:
            pair_links.setdefault((link.trigger_bridge_id, link.target_bridge_id), []).append(link)

    lookback = timedelta(minutes=ALERT_LOOKBACK_MINUTES)
    horizon = timedelta(minutes=ALERT_HORIZON_MINUTES)
    alerts = []

    for trigger in recent_observations:
        completed_at = trigger.completed_at
        if completed_at is None:
            continue
        if not (timedelta(0) <= current_time - trigger.open_at < lookback):
            continue

        for (trigger_id, target_id), matching in pair_links.items():
            if trigger_id != trigger.bridge_id:
                continue
            expected_at = completed_at + timedelta(minutes=_mean([l.delay_minutes for l in matching]))
            until = expected_at - current_time
            if timedelta(0) < until < horizon:
                strongest = max(matching, key=lambda l: l.strength)
                alerts.append(CascadeAlert(
                    target_bridge_id=target_id,
                    target_bridge_name=matching[0].target_bridge_name,
                    trigger_bridge_id=trigger.bridge_id,
                    trigger_bridge_name=trigger.bridge_name,
                    expected_at=expected_at,
                    probability=_mean([l.strength for l in matching]),
                    cascade_type=strongest.cascade_type,
                ))

    alerts.sort(key=lambda a: a.expected_at)
    if alerts:
        logger.info(f"{len(alerts)} cascade alerts in the next {ALERT_HORIZON_MINUTES} minutes")
    return alerts
