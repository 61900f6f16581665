"""
Rolling background noise estimate over short-time energy.
"""

import math
from collections import deque

NOISE_BUFFER_SIZE = 50
NOISE_PERCENTILE = 0.2
MIN_ADAPTIVE_THRESHOLD = 0.1
ADAPTIVE_THRESHOLD_FACTOR = 3


class BackgroundNoiseTracker:
    """Tracks the ambient noise floor as a low percentile of recent energies.

    Every frame is pushed, voiced or not. The adaptive threshold is exposed
    for diagnostics and tuning; the classifier uses fixed thresholds.
    """

    def __init__(self, capacity=NOISE_BUFFER_SIZE, percentile=NOISE_PERCENTILE):
        self.capacity = capacity
        self.percentile = percentile
        self._buffer = deque(maxlen=capacity)
        self._level = 0.0

    def update(self, current_energy: float) -> None:
        """Push a short-time energy sample, dropping the oldest beyond capacity."""
        self._buffer.append(float(current_energy))
        ordered = sorted(self._buffer)
        self._level = ordered[math.floor(len(ordered) * self.percentile)]

    @property
    def background_noise_level(self) -> float:
        return self._level if self._buffer else 0.0

    @property
    def adaptive_threshold(self) -> float:
        return max(MIN_ADAPTIVE_THRESHOLD, self.background_noise_level * ADAPTIVE_THRESHOLD_FACTOR)

    def __len__(self):
        return len(self._buffer)

    def reset(self):
        self._buffer.clear()
        self._level = 0.0
