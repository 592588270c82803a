# streaks.py
"""
Closure streak tracking.

A streak is the time a bridge stays closed between two openings. Gaps of
more than STREAK_THRESHOLD_HOURS between consecutive openings are recorded
as historical streaks, and the mean gap between openings predicts the next
opening.

Features:
- Current streak per bridge (hours since its last opening)
- Historical streaks, longest and average
- Next opening prediction with coefficient-of-variation confidence
- Weekly champion (longest current streak over the last 7 days)
- Ranking bridges by current streak
"""
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from loguru import logger

from config import STREAK_LOOKBACK_DAYS, CHAMPION_LOOKBACK_DAYS
from models import Observation, StreakPeriod, StreakRecord, WeeklyChampion
from shared import hours_between, resolve_time

STREAK_THRESHOLD_HOURS = 12.0
MIN_INTERVALS_FOR_CONFIDENCE = 3
LOW_DATA_CONFIDENCE = 0.3
MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 0.95


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def opening_intervals(events: Sequence[Observation]) -> List[float]:
    """Hours between consecutive openings; events must be sorted ascending."""
    return [hours_between(a.open_at, b.open_at) for a, b in zip(events, events[1:])]


def historical_streaks(events: Sequence[Observation]) -> List[StreakPeriod]:
    """Gaps longer than STREAK_THRESHOLD_HOURS between consecutive openings."""
    streaks = []
    for current, following in zip(events, events[1:]):
        gap = hours_between(current.open_at, following.open_at)
        if gap > STREAK_THRESHOLD_HOURS:
            streaks.append(StreakPeriod(start_at=current.open_at, end_at=following.open_at, duration_hours=gap))
    return streaks


def prediction_confidence(intervals: Sequence[float]) -> float:
    """
    1 - coefficient of variation of the opening intervals, clamped to [0.1, 0.95].

    The variation is the mean absolute deviation over the mean. Fewer than
    three intervals gives a fixed 0.3.
    """
    if len(intervals) < MIN_INTERVALS_FOR_CONFIDENCE:
        return LOW_DATA_CONFIDENCE

    average = _mean(intervals)
    if average <= 0:
        return MIN_CONFIDENCE
    deviation = _mean([abs(interval - average) for interval in intervals])
    coefficient_of_variation = deviation / average
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, 1.0 - coefficient_of_variation))


def calculate_streak_record(
    bridge_id: int,
    observations: Iterable[Observation],
    lookback_days: int = STREAK_LOOKBACK_DAYS,
    current_time: Optional[datetime] = None
) -> StreakRecord:
    """
    Streak statistics for one bridge.

    Args:
        bridge_id: Bridge to analyze
        observations: Openings (any bridges, filtered here)
        lookback_days: Only openings within this many days count
        current_time: Current time (defaults to now, injectable for testing)

    Returns:
        StreakRecord, zero-valued when the bridge has no openings in the window
    """
    current_time = resolve_time(current_time)

    cutoff = current_time - timedelta(days=lookback_days)
    events = sorted(
        (o for o in observations if o.bridge_id == bridge_id and o.open_at >= cutoff),
        key=lambda o: o.open_at
    )
    if not events:
        return StreakRecord(bridge_id=bridge_id)

    last_opening = events[-1]
    current_streak = max(0.0, hours_between(last_opening.open_at, current_time))

    streaks = historical_streaks(events)
    durations = [s.duration_hours for s in streaks]

    intervals = opening_intervals(events)
    predicted_at = None
    if intervals:
        predicted_hours = max(0.0, _mean(intervals) - current_streak)
        predicted_at = current_time + timedelta(hours=predicted_hours)

    record = StreakRecord(
        bridge_id=bridge_id,
        bridge_name=last_opening.bridge_name,
        current_streak_hours=current_streak,
        longest_streak_hours=max(durations, default=0.0),
        average_streak_hours=_mean(durations),
        streak_count=len(streaks),
        last_opening_at=last_opening.open_at,
        predicted_next_opening_at=predicted_at,
        confidence=prediction_confidence(intervals),
        historical_streaks=streaks,
    )
    logger.debug(
        f"{record.bridge_name} - Current: {current_streak:.1f}h, "
        f"Longest: {record.longest_streak_hours:.1f}h, Avg: {record.average_streak_hours:.1f}h"
    )
    return record


def historical_context(record: StreakRecord) -> str:
    """Compare a current streak with the bridge's history."""
    if record.current_streak_hours > record.longest_streak_hours * 0.8:
        return "Near record-breaking streak"
    if record.current_streak_hours > record.average_streak_hours * 1.5:
        return "Above average performance"
    if record.current_streak_hours < record.average_streak_hours * 0.5:
        return "Below average streak"
    return "Typical performance"


def _bridge_ids(observations: Sequence[Observation]) -> List[int]:
    return sorted({o.bridge_id for o in observations})


def rank_bridges_by_streak(
    observations: Iterable[Observation],
    lookback_days: int = STREAK_LOOKBACK_DAYS,
    current_time: Optional[datetime] = None
) -> List[StreakRecord]:
    """Streak records for every bridge, longest current streak first."""
    current_time = resolve_time(current_time)
    observations = list(observations)

    records = [
        calculate_streak_record(bridge_id, observations, lookback_days, current_time)
        for bridge_id in _bridge_ids(observations)
    ]
    records.sort(key=lambda r: (-r.current_streak_hours, r.bridge_id))
    return records


def calculate_weekly_champion(
    observations: Iterable[Observation],
    current_time: Optional[datetime] = None
) -> Optional[WeeklyChampion]:
    """
    Bridge with the longest current streak over the last CHAMPION_LOOKBACK_DAYS.

    Returns:
        WeeklyChampion, or None when no bridge opened in the window
    """
    records = rank_bridges_by_streak(observations, CHAMPION_LOOKBACK_DAYS, current_time)
    contenders = [r for r in records if r.current_streak_hours > 0]
    if not contenders:
        logger.info("No weekly champion found")
        return None

    best = contenders[0]
    champion = WeeklyChampion(
        bridge_id=best.bridge_id,
        bridge_name=best.bridge_name,
        streak_hours=best.current_streak_hours,
        confidence=best.confidence,
        historical_context=historical_context(best),
    )
    logger.info(f"Weekly champion: {champion.bridge_name} ({champion.streak_hours:.1f} hours)")
    return champion
