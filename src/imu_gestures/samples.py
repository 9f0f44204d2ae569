"""IMU samples and the bounded ring buffer that feeds every consumer."""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from itertools import islice
from typing import Iterable, Optional, Sequence

import numpy as np

from imu_gestures.errors import InvalidInput

AXIS_NAMES = ("ax", "ay", "az", "gx", "gy", "gz")


@dataclass(frozen=True)
class IMUSample:
    """One accelerometer (and optionally gyroscope) reading."""
    timestamp: float  # milliseconds, monotonic
    ax: float
    ay: float
    az: float
    gx: Optional[float] = None
    gy: Optional[float] = None
    gz: Optional[float] = None

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.ax * self.ax + self.ay * self.ay + self.az * self.az)

    @property
    def has_gyro(self) -> bool:
        return self.gx is not None or self.gy is not None or self.gz is not None

    def values(self) -> tuple[float, float, float, float, float, float]:
        """All six axes, missing gyro axes reported as 0."""
        return (
            self.ax, self.ay, self.az,
            self.gx or 0.0, self.gy or 0.0, self.gz or 0.0,
        )

    def to_dict(self) -> dict:
        data = {"timestamp": self.timestamp, "ax": self.ax, "ay": self.ay, "az": self.az}
        if self.has_gyro:
            data.update(gx=self.gx, gy=self.gy, gz=self.gz)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> IMUSample:
        try:
            return cls(
                timestamp=float(data["timestamp"]),
                ax=float(data["ax"]),
                ay=float(data["ay"]),
                az=float(data["az"]),
                gx=_optional_float(data.get("gx")),
                gy=_optional_float(data.get("gy")),
                gz=_optional_float(data.get("gz")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInput(f"Malformed IMU sample {data!r}: {e}") from e


def _optional_float(value) -> Optional[float]:
    return None if value is None else float(value)


def to_array(samples: Sequence[IMUSample], axes: int = 3) -> np.ndarray:
    """Stack samples into an (N, axes) float64 array. `axes` is 3 or 6."""
    if axes not in (3, 6):
        raise InvalidInput(f"axes must be 3 or 6, got {axes}")
    if not samples:
        return np.zeros((0, axes), dtype=np.float64)
    return np.array([s.values()[:axes] for s in samples], dtype=np.float64)


def magnitudes(samples: Iterable[IMUSample]) -> np.ndarray:
    """Acceleration magnitude series sqrt(ax² + ay² + az²)."""
    return np.array([s.magnitude for s in samples], dtype=np.float64)


class SampleBuffer:
    """Fixed-capacity circular buffer of IMU samples.

    Holds exactly the last `capacity` samples pushed, oldest first. Pushing
    beyond capacity silently evicts the oldest sample. Reads never mutate.
    """

    def __init__(self, capacity: int = 500):
        if capacity <= 0:
            raise InvalidInput(f"Buffer capacity must be positive, got {capacity}")
        self._samples: deque[IMUSample] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._samples.maxlen  # type: ignore[return-value]

    def push(self, sample: IMUSample):
        self._samples.append(sample)

    def extend(self, samples: Iterable[IMUSample]):
        self._samples.extend(samples)

    def latest(self, n: int) -> list[IMUSample]:
        """Return the last min(n, len) samples, oldest first."""
        if n <= 0:
            return []
        size = len(self._samples)
        return list(islice(self._samples, max(0, size - n), size))

    def last(self) -> Optional[IMUSample]:
        return self._samples[-1] if self._samples else None

    def magnitudes(self, n: Optional[int] = None) -> np.ndarray:
        window = self.latest(n) if n is not None else list(self._samples)
        return magnitudes(window)

    @property
    def duration_ms(self) -> float:
        if len(self._samples) < 2:
            return 0.0
        return self._samples[-1].timestamp - self._samples[0].timestamp

    @property
    def is_full(self) -> bool:
        return len(self._samples) == self.capacity

    def clear(self):
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self):
        return iter(list(self._samples))
