# analytics.py
"""
Bridge activity analytics pipeline.

One call runs the whole chain over a batch of observations:
aggregation -> seasonal decomposition -> cascade detection ->
cascade application -> bucket predictions.

The result is a plain in-memory snapshot. ARIMA forecasts and streaks read
raw observations directly and are not part of the pipeline.
Entry points call configure_logging() to install the log format.
"""
import sys
import time
from datetime import datetime
from typing import Iterable, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from cascade import apply_cascade_analysis, detect_cascades, generate_cascade_insights, get_cascade_alerts
from config import LOG_LEVEL
from models import AnalyticsBucket, CascadeAlert, CascadeLink, Observation, Prediction
from predictions import calculate_bucket_predictions, get_current_prediction
from seasonal import decompose, generate_seasonal_insights
from shared import resolve_time
from stats_calculator import aggregate_observations, find_buckets

LOG_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"


def configure_logging(level: str = LOG_LEVEL, sink=sys.stderr) -> None:
    """
    Replace loguru's handlers with the analytics format.

    Call once at application startup. Importing this module leaves the
    caller's logging setup alone.
    """
    logger.remove()
    logger.add(
        sink,
        format=LOG_FORMAT,
        level=level,
        enqueue=False,
        colorize=False  # Disable colors for Docker
    )


class AnalyticsResult(BaseModel):
    """Buckets with predictions plus the cascade links they were built from."""
    buckets: List[AnalyticsBucket] = Field(default_factory=list)
    links: List[CascadeLink] = Field(default_factory=list)
    observation_count: int = 0
    calculated_at: datetime

    def find_buckets(
        self,
        bridge_id: int,
        month: Optional[int] = None,
        day_of_week: Optional[int] = None,
        hour: Optional[int] = None
    ) -> List[AnalyticsBucket]:
        return find_buckets(self.buckets, bridge_id, month, day_of_week, hour)

    def insights(self, bridge_id: int) -> List[str]:
        """Seasonal then cascade insights for one bridge."""
        return generate_seasonal_insights(bridge_id, self.buckets) + generate_cascade_insights(bridge_id, self.links)

    def predict(
        self,
        bridge_id: int,
        recent_observations: Iterable[Observation] = (),
        current_time: Optional[datetime] = None
    ) -> Prediction:
        return get_current_prediction(bridge_id, self.buckets, self.links, recent_observations, current_time)

    def alerts(
        self,
        recent_observations: Iterable[Observation],
        current_time: Optional[datetime] = None
    ) -> List[CascadeAlert]:
        return get_cascade_alerts(recent_observations, self.links, current_time)


def calculate_analytics(
    observations: Iterable[Observation],
    current_time: Optional[datetime] = None
) -> AnalyticsResult:
    """
    Run the full analytics pipeline.

    Args:
        observations: Raw openings for any number of bridges, in any order
        current_time: Current time (defaults to now, injectable for testing)

    Returns:
        AnalyticsResult with decomposed, cascade-annotated and predicted buckets
    """
    current_time = resolve_time(current_time)
    start = time.monotonic()
    observations = list(observations)

    if not observations:
        logger.warning("No observations - analytics result is empty")
        return AnalyticsResult(calculated_at=current_time)

    buckets = aggregate_observations(observations)
    buckets = decompose(buckets)
    links = detect_cascades(observations)
    apply_cascade_analysis(buckets, links)
    calculate_bucket_predictions(buckets, observations, links, current_time)

    elapsed = time.monotonic() - start
    bridges = len({b.bridge_id for b in buckets})
    logger.info(
        f"Analytics complete: {len(observations)} observations, {bridges} bridges, "
        f"{len(buckets)} buckets, {len(links)} cascades in {elapsed:.2f}s"
    )

    return AnalyticsResult(
        buckets=buckets,
        links=links,
        observation_count=len(observations),
        calculated_at=current_time,
    )
