#!/usr/bin/env python3
"""
Bridge Analytics Aggregation Tests

Tests time-bucket aggregation of raw openings: keys, duration statistics
and order independence.

Run with: python3 test_aggregation.py
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import random
import unittest
from datetime import datetime, timedelta

from loguru import logger
from models import Observation
from shared import TIMEZONE
from stats_calculator import aggregate_observations, find_buckets, group_by_bridge


def opening(bridge_id, start, minutes, name=None):
    start = TIMEZONE.localize(start)
    return Observation(
        bridge_id=bridge_id,
        bridge_name=name or f"Bridge {bridge_id}",
        open_at=start,
        close_at=start + timedelta(minutes=minutes),
    )


class TestAggregation(unittest.TestCase):

    def test_same_slot_openings_share_bucket(self):
        """Openings in the same bridge/year/month/weekday/hour land in one bucket"""
        observations = [
            opening(1, datetime(2024, 6, 3, 9, 0), 10),   # Monday
            opening(1, datetime(2024, 6, 3, 9, 40), 20),
            opening(1, datetime(2024, 6, 10, 9, 15), 6),  # next Monday, same slot
        ]
        buckets = aggregate_observations(observations)

        self.assertEqual(len(buckets), 1)
        bucket = buckets[0]
        self.assertEqual((bucket.year, bucket.month, bucket.day_of_week, bucket.hour), (2024, 6, 2, 9))
        self.assertEqual(bucket.opening_count, 3)
        self.assertAlmostEqual(bucket.total_minutes_open, 36.0)
        self.assertAlmostEqual(bucket.average_minutes_per_opening, 12.0)
        self.assertAlmostEqual(bucket.longest_opening_minutes, 20.0)
        self.assertAlmostEqual(bucket.shortest_opening_minutes, 6.0)

    def test_different_hours_and_bridges_split(self):
        """Each bridge and hour gets its own bucket, sorted by key"""
        observations = [
            opening(2, datetime(2024, 6, 3, 9, 0), 10),
            opening(1, datetime(2024, 6, 3, 10, 0), 10),
            opening(1, datetime(2024, 6, 3, 9, 0), 10),
        ]
        buckets = aggregate_observations(observations)

        self.assertEqual([(b.bridge_id, b.hour) for b in buckets], [(1, 9), (1, 10), (2, 9)])

    def test_sunday_is_day_one(self):
        """Weekdays are numbered 1 = Sunday ... 7 = Saturday"""
        buckets = aggregate_observations([
            opening(1, datetime(2024, 6, 2, 12, 0), 5),  # Sunday
            opening(1, datetime(2024, 6, 1, 12, 0), 5),  # Saturday
        ])
        self.assertEqual(sorted(b.day_of_week for b in buckets), [1, 7])

    def test_order_independence(self):
        """Shuffled input produces identical buckets"""
        rng = random.Random(7)
        base = datetime(2024, 5, 1, 0, 0)
        observations = [
            opening(rng.randint(1, 3), base + timedelta(minutes=rng.randint(0, 60 * 24 * 30)), rng.uniform(1, 45))
            for _ in range(300)
        ]
        shuffled = list(observations)
        rng.shuffle(shuffled)

        first = [b.model_dump() for b in aggregate_observations(observations)]
        second = [b.model_dump() for b in aggregate_observations(shuffled)]
        self.assertEqual(first, second)

    def test_bucket_invariants(self):
        """shortest <= average <= longest and at least one opening per bucket"""
        rng = random.Random(11)
        base = datetime(2024, 1, 1, 0, 0)
        observations = [
            opening(rng.randint(1, 4), base + timedelta(minutes=rng.randint(0, 60 * 24 * 90)), rng.uniform(0, 90))
            for _ in range(500)
        ]
        buckets = aggregate_observations(observations)

        self.assertEqual(sum(b.opening_count for b in buckets), 500)
        for bucket in buckets:
            self.assertGreaterEqual(bucket.opening_count, 1)
            self.assertLessEqual(bucket.shortest_opening_minutes, bucket.average_minutes_per_opening)
            self.assertLessEqual(bucket.average_minutes_per_opening, bucket.longest_opening_minutes)

    def test_bucket_name_from_earliest_opening(self):
        """A renamed bridge keeps the name of its earliest opening in the slot"""
        buckets = aggregate_observations([
            opening(1, datetime(2024, 6, 10, 9, 0), 10, name="New Name"),
            opening(1, datetime(2024, 6, 3, 9, 0), 10, name="Old Name"),
        ])
        self.assertEqual(buckets[0].bridge_name, "Old Name")

    def test_empty_input(self):
        """No observations gives no buckets"""
        self.assertEqual(aggregate_observations([]), [])


class TestBucketQueries(unittest.TestCase):

    def setUp(self):
        self.buckets = aggregate_observations([
            opening(1, datetime(2024, 6, 3, 9, 0), 10),   # Monday June
            opening(1, datetime(2024, 6, 4, 9, 0), 10),   # Tuesday June
            opening(1, datetime(2024, 7, 1, 17, 0), 10),  # Monday July
            opening(2, datetime(2024, 6, 3, 9, 0), 10),
        ])

    def test_find_by_bridge_only(self):
        self.assertEqual(len(find_buckets(self.buckets, 1)), 3)
        self.assertEqual(len(find_buckets(self.buckets, 2)), 1)
        self.assertEqual(find_buckets(self.buckets, 99), [])

    def test_find_by_slot(self):
        """Filters combine: month, weekday and hour"""
        self.assertEqual(len(find_buckets(self.buckets, 1, month=6)), 2)
        self.assertEqual(len(find_buckets(self.buckets, 1, day_of_week=2)), 2)
        self.assertEqual(len(find_buckets(self.buckets, 1, month=6, day_of_week=2, hour=9)), 1)
        self.assertEqual(find_buckets(self.buckets, 1, month=6, hour=17), [])

    def test_group_by_bridge(self):
        groups = group_by_bridge(self.buckets)
        self.assertEqual(sorted(groups), [1, 2])
        months = [b.month for b in groups[1]]
        self.assertEqual(months, sorted(months))

if __name__ == '__main__':
    print("Running Bridge Analytics Aggregation Tests...")
    print("Testing time-bucket statistics.")
    print("=" * 70)

    # Suppress log output during tests
    logger.remove()
    logger.add(sys.stderr, level="CRITICAL")

    unittest.main(verbosity=2)
