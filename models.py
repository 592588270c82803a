# models.py
"""
Data model for bridge activity analytics.

Observations come in from the ingestion layer; everything else is derived
in memory by the analytics modules and handed to the presentation layer.
All timestamps are normalized to bridge time (see shared.TIMEZONE).
"""
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

from shared import parse_datetime, calendar_key


def _normalize_timestamp(value):
    if value is None:
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError(f"Invalid timestamp: {value!r}")
    return parsed


class Observation(BaseModel):
    """A single bridge opening. close_at is None while the bridge is still open."""
    bridge_id: int = Field(ge=0, description="Bridge entity ID", examples=[1])
    bridge_name: str = Field(description="Bridge name", examples=["Fremont Bridge"])
    open_at: datetime = Field(description="When the bridge opened")
    close_at: Optional[datetime] = Field(default=None, description="When the bridge closed, None if still open")
    duration_minutes: Optional[float] = Field(default=None, ge=0, description="Minutes the bridge was open")
    latitude: float = Field(default=0.0, description="Latitude", examples=[47.65])
    longitude: float = Field(default=0.0, description="Longitude", examples=[-122.35])

    model_config = {"frozen": True}

    @field_validator('open_at', 'close_at', mode='before')
    @classmethod
    def _localize(cls, value):
        return _normalize_timestamp(value)

    @model_validator(mode='after')
    def _check_close_after_open(self):
        if self.close_at is not None and self.close_at < self.open_at:
            raise ValueError(f"close_at {self.close_at} is before open_at {self.open_at}")
        return self

    @property
    def is_open(self) -> bool:
        return self.close_at is None

    @property
    def minutes_open(self) -> float:
        if self.duration_minutes is not None:
            return self.duration_minutes
        if self.close_at is not None:
            return (self.close_at - self.open_at).total_seconds() / 60
        return 0.0

    @property
    def completed_at(self) -> Optional[datetime]:
        """When the bridge closed again, derived from the duration if close_at is missing."""
        if self.close_at is not None:
            return self.close_at
        if self.duration_minutes is not None:
            return self.open_at + timedelta(minutes=self.duration_minutes)
        return None


class AnalyticsBucket(BaseModel):
    """Aggregated statistics for one bridge in one (year, month, day of week, hour) slot."""
    bridge_id: int
    bridge_name: str
    year: int
    month: int = Field(ge=1, le=12)
    day_of_week: int = Field(ge=1, le=7, description="1 = Sunday, 7 = Saturday")
    hour: int = Field(ge=0, le=23)

    opening_count: int = Field(default=1, ge=1)
    total_minutes_open: float = 0.0
    average_minutes_per_opening: float = 0.0
    longest_opening_minutes: float = 0.0
    shortest_opening_minutes: float = 0.0

    # Seasonal decomposition
    trend_component: float = 0.0
    seasonal_component: float = 0.0
    residual_component: float = 0.0
    weekly_seasonality: float = 0.0
    monthly_seasonality: float = 0.0
    hourly_seasonality: float = 0.0
    is_weekend_pattern: bool = False
    is_rush_hour_pattern: bool = False
    is_summer_pattern: bool = False
    holiday_adjustment: float = 0.0

    # Cascade effects
    cascade_influence: float = 0.0
    cascade_susceptibility: float = 0.0
    primary_cascade_target: Optional[int] = None
    cascade_delay: float = 0.0
    cascade_probability: float = 0.0

    # Forecast
    probability_of_opening: float = 0.0
    expected_duration: float = 0.0
    confidence: float = 0.0

    last_calculated: Optional[datetime] = None

    @property
    def key(self) -> Tuple[int, int, int, int, int]:
        return (self.bridge_id, self.year, self.month, self.day_of_week, self.hour)

    @property
    def id(self) -> str:
        return f"{self.bridge_id}-{self.year}-{self.month}-{self.day_of_week}-{self.hour}"


class CascadeLink(BaseModel):
    """One bridge closing followed shortly by another bridge opening."""
    trigger_bridge_id: int
    trigger_bridge_name: str
    target_bridge_id: int
    target_bridge_name: str
    trigger_open_at: datetime = Field(description="When the trigger bridge opened")
    trigger_at: datetime = Field(description="When the trigger bridge closed")
    target_at: datetime = Field(description="When the target bridge opened")
    delay_minutes: float = Field(gt=0)
    trigger_duration: float
    target_duration: float
    strength: float = Field(ge=0.0, le=1.0)
    cascade_type: str = Field(examples=["short-term"])

    model_config = {"frozen": True}

    @property
    def trigger_slot(self) -> Tuple[int, int, int]:
        """(month, day_of_week, hour) the trigger opened in, matching its bucket."""
        _, month, dow, hour = calendar_key(self.trigger_open_at)
        return month, dow, hour

    @property
    def target_slot(self) -> Tuple[int, int, int]:
        """(month, day_of_week, hour) of the target opening."""
        _, month, dow, hour = calendar_key(self.target_at)
        return month, dow, hour


def probability_band(probability: float) -> str:
    if probability < 0.1:
        return "Very Low"
    if probability < 0.3:
        return "Low"
    if probability < 0.6:
        return "Moderate"
    if probability < 0.8:
        return "High"
    return "Very High"


class CascadeAlert(BaseModel):
    """Expected cascade opening projected from a trigger that just finished."""
    target_bridge_id: int
    target_bridge_name: str
    trigger_bridge_id: int
    trigger_bridge_name: str
    expected_at: datetime
    probability: float = Field(ge=0.0, le=1.0)
    cascade_type: str

    def minutes_until_expected(self, current_time: datetime) -> int:
        return int((self.expected_at - current_time).total_seconds() / 60)

    def time_until_expected_text(self, current_time: datetime) -> str:
        minutes = self.minutes_until_expected(current_time)
        if minutes <= 0:
            return "Now"
        if minutes == 1:
            return "1 minute"
        return f"{minutes} minutes"

    @property
    def probability_text(self) -> str:
        if self.probability < 0.3:
            return "Low"
        if self.probability < 0.6:
            return "Moderate"
        if self.probability < 0.8:
            return "High"
        return "Very High"


class Prediction(BaseModel):
    """Opening forecast for one bridge, keyed by bridge and "now". Never stored."""
    bridge_id: int
    bridge_name: str = ""
    probability: float = Field(ge=0.0, le=1.0)
    expected_duration_minutes: float = Field(ge=0.0)
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str
    time_frame: str = "next hour"
    source: str = Field(default="analytics", description="analytics, arima or fallback")

    @property
    def probability_text(self) -> str:
        return probability_band(self.probability)

    @property
    def confidence_text(self) -> str:
        if self.confidence < 0.3:
            return "Low Confidence"
        if self.confidence < 0.7:
            return "Medium Confidence"
        return "High Confidence"

    @property
    def duration_text(self) -> str:
        if self.expected_duration_minutes < 1:
            return "< 1 minute"
        if self.expected_duration_minutes < 60:
            return f"{int(self.expected_duration_minutes)} minutes"
        hours = int(self.expected_duration_minutes // 60)
        minutes = int(self.expected_duration_minutes % 60)
        return f"{hours}h {minutes}m"


class CapabilityDescriptor(BaseModel):
    """Compute available to the forecaster."""
    core_count: int = Field(default=1, ge=1, description="CPU/accelerator cores")
    throughput_tops: float = Field(default=0.0, ge=0.0, description="Accelerator throughput (TOPS), 0 if none")


class ARIMAModel(BaseModel):
    bridge_id: int
    tier: str
    order: Tuple[int, int, int]
    ar_coefficients: List[float]
    ma_coefficients: List[float]
    intercept: float
    training_sample_size: int
    accuracy: float = Field(ge=0.0, le=1.0)
    rmse: float = Field(ge=0.0)
    trained_at: datetime

    @property
    def config_text(self) -> str:
        p, d, q = self.order
        return f"ARIMA({p},{d},{q})"


class ARIMAForecast(BaseModel):
    prediction: Prediction
    model: Optional[ARIMAModel] = None
    used_fallback: bool = False
    tier: str


class StreakPeriod(BaseModel):
    start_at: datetime
    end_at: datetime
    duration_hours: float


def _format_hours(hours: float) -> str:
    if hours < 24:
        return f"{int(hours)}h"
    days = int(hours // 24)
    remainder = int(hours % 24)
    return f"{days}d {remainder}h"


class StreakRecord(BaseModel):
    """How long a bridge has gone without opening, and when it is likely to open next."""
    bridge_id: int
    bridge_name: str = ""
    current_streak_hours: float = 0.0
    longest_streak_hours: float = 0.0
    average_streak_hours: float = 0.0
    streak_count: int = 0
    last_opening_at: Optional[datetime] = None
    predicted_next_opening_at: Optional[datetime] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    historical_streaks: List[StreakPeriod] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def formatted_current_streak(self) -> str:
        return _format_hours(self.current_streak_hours)

    @property
    def formatted_longest_streak(self) -> str:
        return _format_hours(self.longest_streak_hours)

    @property
    def streak_status(self) -> str:
        if self.current_streak_hours > self.longest_streak_hours * 0.8:
            return "record"
        if self.current_streak_hours > self.average_streak_hours * 1.2:
            return "good"
        if self.current_streak_hours < self.average_streak_hours * 0.8:
            return "poor"
        return "normal"


class WeeklyChampion(BaseModel):
    bridge_id: int
    bridge_name: str
    streak_hours: float
    confidence: float = Field(ge=0.0, le=1.0)
    historical_context: str
