"""Activity level from rolling accelerometer magnitude variance.

Variance bands (defaults):
- < 0.1       stationary
- 0.1 – 2.0   low
- 2.0 – 8.0   moderate
- >= 8.0      high
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

import numpy as np

from imu_gestures.config import ActivityConfig
from imu_gestures.samples import IMUSample


class ActivityLevel(Enum):
    STATIONARY = "stationary"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


@dataclass(frozen=True)
class ActivityContext:
    level: ActivityLevel
    variance: float
    timestamp: float

    def to_dict(self) -> dict:
        return {"level": self.level.value, "variance": self.variance, "timestamp": self.timestamp}


class ActivityClassifier:
    """Buckets the trailing-window magnitude variance into an activity band.

    `update()` returns a new context only when the band changes, so callers
    can forward it as an edge-triggered notification.
    """

    def __init__(self, config: Optional[ActivityConfig] = None):
        self.config = config or ActivityConfig()
        self.config.validate()
        self._magnitudes: deque[float] = deque(maxlen=self.config.window)
        self._context = ActivityContext(ActivityLevel.STATIONARY, 0.0, 0.0)

    @property
    def context(self) -> ActivityContext:
        return self._context

    def classify(self, variance: float) -> ActivityLevel:
        stationary, low, moderate = self.config.thresholds
        if variance < stationary:
            return ActivityLevel.STATIONARY
        if variance < low:
            return ActivityLevel.LOW
        if variance < moderate:
            return ActivityLevel.MODERATE
        return ActivityLevel.HIGH

    def update(self, samples: Iterable[IMUSample]) -> Optional[ActivityContext]:
        """Absorb new samples. Returns the new context on a band transition, else None."""
        last_ts = None
        for s in samples:
            self._magnitudes.append(s.magnitude)
            last_ts = s.timestamp
        if last_ts is None:
            return None

        if len(self._magnitudes) < self.config.min_samples:
            variance = 0.0
        else:
            variance = float(np.var(np.fromiter(self._magnitudes, dtype=np.float64)))

        previous = self._context.level
        self._context = ActivityContext(self.classify(variance), variance, last_ts)
        return self._context if self._context.level != previous else None

    def reset(self):
        self._magnitudes.clear()
        self._context = ActivityContext(ActivityLevel.STATIONARY, 0.0, 0.0)
