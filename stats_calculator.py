# stats_calculator.py
"""
Time-bucket aggregation of bridge openings.

Groups raw observations into one AnalyticsBucket per
(bridge, year, month, day of week, hour) slot with opening counts and
duration statistics. The result does not depend on input order.
"""
import math
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from models import AnalyticsBucket, Observation
from shared import calendar_key

BucketKey = Tuple[int, int, int, int, int]


class _BucketAccumulator:
    """Read-modify-write accumulator for one bucket key, local to one aggregation call."""

    __slots__ = ('first_open_at', 'bridge_name', 'durations', 'longest', 'shortest')

    def __init__(self, observation: Observation):
        self.first_open_at = observation.open_at
        self.bridge_name = observation.bridge_name
        self.durations = [observation.minutes_open]
        self.longest = observation.minutes_open
        self.shortest = observation.minutes_open

    def add(self, observation: Observation) -> None:
        minutes = observation.minutes_open
        self.durations.append(minutes)
        self.longest = max(self.longest, minutes)
        self.shortest = min(self.shortest, minutes)
        # Name of the earliest observation wins so the result is order independent
        if (observation.open_at, observation.bridge_name) < (self.first_open_at, self.bridge_name):
            self.first_open_at = observation.open_at
            self.bridge_name = observation.bridge_name


def aggregate_observations(observations: Iterable[Observation]) -> List[AnalyticsBucket]:
    """
    Aggregate observations into per-bridge time buckets.

    Args:
        observations: Raw openings, in any order

    Returns:
        List of AnalyticsBucket sorted by (bridge_id, year, month, day_of_week, hour)
    """
    accumulators: Dict[BucketKey, _BucketAccumulator] = {}
    processed = 0

    for observation in observations:
        year, month, dow, hour = calendar_key(observation.open_at)
        key = (observation.bridge_id, year, month, dow, hour)

        existing = accumulators.get(key)
        if existing is None:
            accumulators[key] = _BucketAccumulator(observation)
        else:
            existing.add(observation)

        processed += 1
        if processed % 500 == 0:
            logger.debug(f"Aggregated {processed} observations")

    buckets = []
    for key in sorted(accumulators):
        bridge_id, year, month, dow, hour = key
        acc = accumulators[key]
        # fsum is exactly rounded, so the total is the same for any permutation
        total = math.fsum(acc.durations)
        count = len(acc.durations)
        average = total / count
        buckets.append(AnalyticsBucket(
            bridge_id=bridge_id,
            bridge_name=acc.bridge_name,
            year=year,
            month=month,
            day_of_week=dow,
            hour=hour,
            opening_count=count,
            total_minutes_open=total,
            # Keep shortest <= average <= longest even with float rounding
            average_minutes_per_opening=min(max(average, acc.shortest), acc.longest),
            longest_opening_minutes=acc.longest,
            shortest_opening_minutes=acc.shortest,
        ))

    logger.info(f"Aggregated {processed} observations into {len(buckets)} buckets")
    return buckets


def group_by_bridge(buckets: Iterable[AnalyticsBucket]) -> Dict[int, List[AnalyticsBucket]]:
    """Group buckets per bridge, each list sorted by time key."""
    groups: Dict[int, List[AnalyticsBucket]] = {}
    for bucket in buckets:
        groups.setdefault(bucket.bridge_id, []).append(bucket)
    for bridge_buckets in groups.values():
        bridge_buckets.sort(key=lambda b: (b.year, b.month, b.day_of_week, b.hour))
    return groups


def find_buckets(
    buckets: Iterable[AnalyticsBucket],
    bridge_id: int,
    month: Optional[int] = None,
    day_of_week: Optional[int] = None,
    hour: Optional[int] = None
) -> List[AnalyticsBucket]:
    """Query buckets by bridge and any of month, day of week and hour."""
    return [
        b for b in buckets
        if b.bridge_id == bridge_id
        and (month is None or b.month == month)
        and (day_of_week is None or b.day_of_week == day_of_week)
        and (hour is None or b.hour == hour)
    ]
