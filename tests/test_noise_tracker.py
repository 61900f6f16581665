"""Unit tests for the background noise tracker."""

from __future__ import annotations

import unittest

from smart_transcriber.core.noise_tracker import BackgroundNoiseTracker


class TestBackgroundNoiseTracker(unittest.TestCase):
    """Tests for BackgroundNoiseTracker."""

    def setUp(self) -> None:
        self.tracker = BackgroundNoiseTracker()

    def test_empty_tracker(self) -> None:
        self.assertEqual(self.tracker.background_noise_level, 0.0)
        self.assertAlmostEqual(self.tracker.adaptive_threshold, 0.1)
        self.assertEqual(len(self.tracker), 0)

    def test_twentieth_percentile(self) -> None:
        for value in [10, 9, 8, 7, 6, 5, 4, 3, 2, 1]:
            self.tracker.update(value)
        self.assertEqual(self.tracker.background_noise_level, 3)
        self.assertEqual(self.tracker.adaptive_threshold, 9)

    def test_capacity_drops_oldest(self) -> None:
        for value in range(60):
            self.tracker.update(value)
        self.assertEqual(len(self.tracker), 50)
        # Buffer holds 10..59; index floor(50 * 0.2) = 10
        self.assertEqual(self.tracker.background_noise_level, 20)

    def test_level_bounded_by_pushed_values(self) -> None:
        for value in [0.3, 0.01, 0.7, 0.02]:
            self.tracker.update(value)
            self.assertGreaterEqual(self.tracker.background_noise_level, 0.0)
            self.assertLessEqual(self.tracker.background_noise_level, 0.7)

    def test_threshold_floor(self) -> None:
        self.tracker.update(0.001)
        self.assertAlmostEqual(self.tracker.adaptive_threshold, 0.1)

    def test_reset(self) -> None:
        self.tracker.update(5)
        self.tracker.reset()
        self.assertEqual(self.tracker.background_noise_level, 0.0)
        self.assertEqual(len(self.tracker), 0)


if __name__ == "__main__":
    unittest.main()
