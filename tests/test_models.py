#!/usr/bin/env python3
"""
Bridge Analytics Model Tests

Validation of incoming observations and the display helpers on derived
models.

Run with: python3 test_models.py
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest
from datetime import datetime, timedelta

from loguru import logger
from pydantic import ValidationError
from models import AnalyticsBucket, CascadeAlert, Observation, Prediction, StreakRecord, probability_band
from shared import TIMEZONE, calendar_key, format_hour, parse_datetime


class TestObservationValidation(unittest.TestCase):

    def test_naive_timestamps_are_bridge_time(self):
        """Naive datetimes are localized to the bridge timezone"""
        obs = Observation(bridge_id=1, bridge_name="Fremont", open_at=datetime(2024, 6, 3, 9, 0))
        self.assertIsNotNone(obs.open_at.tzinfo)
        self.assertEqual(calendar_key(obs.open_at), (2024, 6, 2, 9))

    def test_iso_string_timestamps(self):
        """ISO strings with Z suffix are accepted and converted"""
        obs = Observation(bridge_id=1, bridge_name="Fremont", open_at="2024-06-03T16:00:00Z")
        # 16:00 UTC is 09:00 Pacific daylight time
        self.assertEqual(calendar_key(obs.open_at), (2024, 6, 2, 9))

    def test_invalid_timestamp_rejected(self):
        with self.assertRaises(ValidationError):
            Observation(bridge_id=1, bridge_name="Fremont", open_at="not a date")

    def test_close_before_open_rejected(self):
        start = TIMEZONE.localize(datetime(2024, 6, 3, 9, 0))
        with self.assertRaises(ValidationError):
            Observation(bridge_id=1, bridge_name="Fremont", open_at=start, close_at=start - timedelta(minutes=1))

    def test_negative_values_rejected(self):
        start = TIMEZONE.localize(datetime(2024, 6, 3, 9, 0))
        with self.assertRaises(ValidationError):
            Observation(bridge_id=-1, bridge_name="Fremont", open_at=start)
        with self.assertRaises(ValidationError):
            Observation(bridge_id=1, bridge_name="Fremont", open_at=start, duration_minutes=-5)

    def test_minutes_open(self):
        """Explicit duration wins, then close - open, then zero while still open"""
        start = TIMEZONE.localize(datetime(2024, 6, 3, 9, 0))
        closed = Observation(bridge_id=1, bridge_name="F", open_at=start, close_at=start + timedelta(minutes=12))
        explicit = Observation(bridge_id=1, bridge_name="F", open_at=start, duration_minutes=7)
        still_open = Observation(bridge_id=1, bridge_name="F", open_at=start)

        self.assertAlmostEqual(closed.minutes_open, 12.0)
        self.assertAlmostEqual(explicit.minutes_open, 7.0)
        self.assertEqual(still_open.minutes_open, 0.0)
        self.assertTrue(still_open.is_open)
        self.assertIsNone(still_open.completed_at)
        self.assertEqual(explicit.completed_at, start + timedelta(minutes=7))

    def test_bucket_needs_an_opening(self):
        """A bucket exists only because something opened in its slot"""
        bucket = AnalyticsBucket(bridge_id=1, bridge_name="Fremont", year=2024, month=6, day_of_week=2, hour=9)
        self.assertEqual(bucket.opening_count, 1)
        with self.assertRaises(ValidationError):
            AnalyticsBucket(bridge_id=1, bridge_name="Fremont", year=2024, month=6, day_of_week=2, hour=9,
                            opening_count=0)


class TestSharedHelpers(unittest.TestCase):

    def test_parse_datetime_failure_returns_none(self):
        self.assertIsNone(parse_datetime("garbage"))
        self.assertIsNone(parse_datetime(12345))

    def test_format_hour(self):
        self.assertEqual(format_hour(0), "12 AM")
        self.assertEqual(format_hour(9), "9 AM")
        self.assertEqual(format_hour(12), "12 PM")
        self.assertEqual(format_hour(15), "3 PM")


class TestDisplayHelpers(unittest.TestCase):

    def test_probability_band_boundaries(self):
        self.assertEqual(probability_band(0.05), "Very Low")
        self.assertEqual(probability_band(0.1), "Low")
        self.assertEqual(probability_band(0.3), "Moderate")
        self.assertEqual(probability_band(0.6), "High")
        self.assertEqual(probability_band(0.8), "Very High")

    def test_prediction_text(self):
        prediction = Prediction(bridge_id=1, probability=0.74, expected_duration_minutes=75,
                                confidence=0.5, reasoning="test")
        self.assertEqual(prediction.probability_text, "High")
        self.assertEqual(prediction.confidence_text, "Medium Confidence")
        self.assertEqual(prediction.duration_text, "1h 15m")

        short = Prediction(bridge_id=1, probability=0.0, expected_duration_minutes=0.5,
                           confidence=0.9, reasoning="test")
        self.assertEqual(short.duration_text, "< 1 minute")
        self.assertEqual(short.confidence_text, "High Confidence")

    def test_prediction_bounds_enforced(self):
        with self.assertRaises(ValidationError):
            Prediction(bridge_id=1, probability=1.5, expected_duration_minutes=1, confidence=0.5, reasoning="x")

    def test_cascade_alert_countdown(self):
        now = TIMEZONE.localize(datetime(2024, 6, 3, 9, 0))
        alert = CascadeAlert(
            target_bridge_id=2, target_bridge_name="Ballard", trigger_bridge_id=1,
            trigger_bridge_name="Fremont", expected_at=now + timedelta(minutes=5),
            probability=0.65, cascade_type="short-term",
        )
        self.assertEqual(alert.time_until_expected_text(now), "5 minutes")
        self.assertEqual(alert.time_until_expected_text(now + timedelta(minutes=4)), "1 minute")
        self.assertEqual(alert.time_until_expected_text(now + timedelta(minutes=6)), "Now")
        self.assertEqual(alert.probability_text, "High")

    def test_streak_formatting(self):
        record = StreakRecord(bridge_id=1, current_streak_hours=30.5, longest_streak_hours=5.5,
                              average_streak_hours=4.0)
        self.assertEqual(record.formatted_current_streak, "1d 6h")
        self.assertEqual(record.formatted_longest_streak, "5h")
        self.assertEqual(record.streak_status, "record")

    def test_streak_status(self):
        def status(current):
            return StreakRecord(bridge_id=1, current_streak_hours=current, longest_streak_hours=100,
                                average_streak_hours=20).streak_status

        self.assertEqual(status(90), "record")
        self.assertEqual(status(30), "good")
        self.assertEqual(status(10), "poor")
        self.assertEqual(status(20), "normal")

if __name__ == '__main__':
    print("Running Bridge Analytics Model Tests...")
    print("Testing observation validation and display helpers.")
    print("=" * 70)

    # Suppress log output during tests
    logger.remove()
    logger.add(sys.stderr, level="CRITICAL")

    unittest.main(verbosity=2)
