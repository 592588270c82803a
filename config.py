# config.py
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}. See .env.example for valid settings.")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


# Calendar used for every bucket key (Seattle drawbridges by default)
BRIDGE_TIMEZONE = os.getenv('BRIDGE_TIMEZONE', 'America/Los_Angeles')

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# Streak lookback windows (days)
STREAK_LOOKBACK_DAYS = _positive_int('STREAK_LOOKBACK_DAYS', 30)
CHAMPION_LOOKBACK_DAYS = _positive_int('CHAMPION_LOOKBACK_DAYS', 7)

# Cascade detection bounds. These keep pairwise matching from going O(bridges² · events²)
CASCADE_WINDOW_MINUTES = _positive_int('CASCADE_WINDOW_MINUTES', 30)
CASCADE_LARGE_DATASET = _positive_int('CASCADE_LARGE_DATASET', 5000)
CASCADE_SAMPLE_SIZE = _positive_int('CASCADE_SAMPLE_SIZE', 1000)
CASCADE_TOP_BRIDGES = _positive_int('CASCADE_TOP_BRIDGES', 5)
CASCADE_MAX_PAIRS = _positive_int('CASCADE_MAX_PAIRS', 20)
CASCADE_MAX_EVENTS_PER_BRIDGE = _positive_int('CASCADE_MAX_EVENTS_PER_BRIDGE', 50)
CASCADE_MAX_TARGETS_PER_TRIGGER = _positive_int('CASCADE_MAX_TARGETS_PER_TRIGGER', 5)

# Optional forecast tier override: basic, moderate or advanced
FORECAST_TIER = os.getenv('FORECAST_TIER', '').strip().lower() or None

if FORECAST_TIER is not None and FORECAST_TIER not in ('basic', 'moderate', 'advanced'):
    raise ValueError(f"FORECAST_TIER must be basic, moderate or advanced, got {FORECAST_TIER!r}")
