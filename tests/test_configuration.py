#!/usr/bin/env python3
"""
Bridge Analytics Configuration Tests

Quick validation of analytics settings to catch deployment errors.

Run with: python3 test_configuration.py
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import importlib
import unittest
from unittest.mock import patch

import pytz
from loguru import logger
import config
from arima import TIER_CONFIGS


class TestConfiguration(unittest.TestCase):

    def tearDown(self):
        # Restore module constants from the real environment
        importlib.reload(config)

    def test_timezone_is_valid(self):
        """Configured timezone must be known to pytz"""
        self.assertIn(config.BRIDGE_TIMEZONE, pytz.all_timezones)

    def test_cascade_bounds_positive(self):
        for name in ('CASCADE_WINDOW_MINUTES', 'CASCADE_LARGE_DATASET', 'CASCADE_SAMPLE_SIZE',
                     'CASCADE_TOP_BRIDGES', 'CASCADE_MAX_PAIRS', 'CASCADE_MAX_EVENTS_PER_BRIDGE',
                     'CASCADE_MAX_TARGETS_PER_TRIGGER'):
            self.assertGreater(getattr(config, name), 0, f"{name} must be positive")

    def test_sample_fits_large_dataset(self):
        """Sampling must actually shrink a large dataset"""
        self.assertLess(config.CASCADE_SAMPLE_SIZE, config.CASCADE_LARGE_DATASET)

    def test_champion_window_within_streak_window(self):
        self.assertLessEqual(config.CHAMPION_LOOKBACK_DAYS, config.STREAK_LOOKBACK_DAYS)

    def test_tier_table_complete(self):
        for tier in ('basic', 'moderate', 'advanced'):
            settings = TIER_CONFIGS[tier]
            p, d, q = settings['order']
            self.assertEqual(d, 1)
            self.assertGreater(settings['min_training_samples'], 0)
            self.assertLessEqual(settings['min_training_samples'], settings['max_series_length'])
            self.assertGreater(p, 0)
            self.assertGreater(q, 0)

    def test_env_override(self):
        with patch.dict(os.environ, {'CASCADE_MAX_PAIRS': '7', 'FORECAST_TIER': 'Advanced'}):
            importlib.reload(config)
            self.assertEqual(config.CASCADE_MAX_PAIRS, 7)
            self.assertEqual(config.FORECAST_TIER, 'advanced')

    def test_non_numeric_setting_rejected(self):
        with patch.dict(os.environ, {'CASCADE_MAX_PAIRS': 'twenty'}):
            with self.assertRaises(ValueError):
                importlib.reload(config)

    def test_non_positive_setting_rejected(self):
        with patch.dict(os.environ, {'STREAK_LOOKBACK_DAYS': '0'}):
            with self.assertRaises(ValueError):
                importlib.reload(config)

    def test_unknown_tier_rejected(self):
        with patch.dict(os.environ, {'FORECAST_TIER': 'supercomputer'}):
            with self.assertRaises(ValueError):
                importlib.reload(config)

if __name__ == '__main__':
    print("Running Bridge Analytics Configuration Tests...")
    print("Testing settings validation for deployment safety.")
    print("=" * 70)

    # Suppress log output during tests
    logger.remove()
    logger.add(sys.stderr, level="CRITICAL")

    unittest.main(verbosity=2)
