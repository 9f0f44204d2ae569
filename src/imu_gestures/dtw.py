"""Dynamic Time Warping between IMU sequences.

Banded (Sakoe-Chiba) DTW over per-sample Euclidean distance, optionally
axis-weighted. Distances are normalized by max(n, m) or by the warping path
length so that sequences of different lengths stay comparable.
"""

from __future__ import annotations

import math
from itertools import combinations
from typing import Optional, Sequence, Union

import numpy as np

from imu_gestures.config import DTWConfig
from imu_gestures.errors import InvalidInput
from imu_gestures.samples import IMUSample, to_array

SequenceLike = Union[Sequence[IMUSample], np.ndarray]


class DTWMatcher:
    """Computes bounded DTW costs and maps them to confidences."""

    def __init__(self, config: Optional[DTWConfig] = None):
        self.config = config or DTWConfig()
        self.config.validate()
        if self.config.axis_weights is not None:
            self._weights = np.asarray(self.config.axis_weights, dtype=np.float64)
        else:
            self._weights = None

    def series(self, seq: SequenceLike) -> np.ndarray:
        """Convert samples (or an array) to an (N, axes) float64 array."""
        axes = self.config.axes
        if isinstance(seq, np.ndarray):
            arr = np.asarray(seq, dtype=np.float64)
            if arr.ndim == 1:
                arr = arr.reshape(-1, 1)
            if arr.ndim != 2:
                raise InvalidInput(f"Sequence array must be 1-D or 2-D, got shape {arr.shape}")
            return arr[:, :axes] if arr.shape[1] > axes else arr
        return to_array(list(seq), axes)

    def distance(self, a: SequenceLike, b: SequenceLike) -> float:
        """Normalized DTW distance between two sequences (0 = identical)."""
        s = self.series(a)
        t = self.series(b)
        n, m = len(s), len(t)
        if n == 0 or m == 0:
            raise InvalidInput("DTW needs two non-empty sequences")
        if s.shape[1] != t.shape[1]:
            raise InvalidInput(
                f"Sequences have different dimensionality ({s.shape[1]} vs {t.shape[1]})"
            )

        # Single-sample sequences: every alignment touches each cell once
        if n == 1:
            return float(self._row_costs(s[0], t).mean())
        if m == 1:
            return float(self._row_costs(t[0], s).mean())

        total, path_len = self._accumulate(s, t)
        if self.config.normalization == "path":
            return total / path_len
        return total / max(n, m)

    @staticmethod
    def confidence(distance: float, max_distance: float) -> float:
        """Map a normalized distance to [0, 1] relative to an acceptance radius."""
        if math.isnan(distance):
            return 0.0
        if max_distance <= 0:
            return 1.0 if distance <= 0 else 0.0
        return float(min(1.0, max(0.0, 1.0 - distance / max_distance)))

    def best_match(
        self, window: SequenceLike, templates: Sequence[SequenceLike]
    ) -> tuple[float, int]:
        """Lowest distance from `window` to any template, and that template's index."""
        if not templates:
            raise InvalidInput("best_match needs at least one template")
        query = self.series(window)
        best = (float("inf"), -1)
        for idx, template in enumerate(templates):
            dist = self.distance(query, self.series(template))
            if dist < best[0]:
                best = (dist, idx)
        return best

    def pairwise_distances(self, sequences: Sequence[SequenceLike]) -> list[float]:
        arrays = [self.series(s) for s in sequences]
        return [self.distance(x, y) for x, y in combinations(arrays, 2)]

    def max_pairwise_distance(self, sequences: Sequence[SequenceLike]) -> float:
        distances = self.pairwise_distances(sequences)
        return max(distances) if distances else 0.0

    def consistency(self, sequences: Sequence[SequenceLike]) -> float:
        """Mean pairwise similarity 1 / (1 + d/scale). 1.0 for fewer than two sequences."""
        distances = self.pairwise_distances(sequences)
        if not distances:
            return 1.0
        scale = self.config.consistency_scale
        return float(np.mean([1.0 / (1.0 + d / scale) for d in distances]))

    def _row_costs(self, x: np.ndarray, t: np.ndarray) -> np.ndarray:
        """Euclidean (optionally weighted) distance from one sample to each row of `t`."""
        sq = (t - x) ** 2
        if self._weights is not None and self._weights.shape[0] == sq.shape[1]:
            sq = sq * self._weights
        return np.sqrt(sq.sum(axis=1))

    def _accumulate(self, s: np.ndarray, t: np.ndarray) -> tuple[float, int]:
        """Banded DP. Returns (cumulative cost, path length) at cell (n, m).

        Local costs are computed only inside the band.
        """
        n, m = len(s), len(t)
        # The band must cover the length difference or (n, m) is unreachable
        w = max(self.config.radius, abs(n - m))
        inf = float("inf")

        cost = [[inf] * (m + 1) for _ in range(n + 1)]
        steps = [[0] * (m + 1) for _ in range(n + 1)]
        cost[0][0] = 0.0

        for i in range(1, n + 1):
            row, prev_row = cost[i], cost[i - 1]
            srow, sprev = steps[i], steps[i - 1]
            lo, hi = max(1, i - w), min(m, i + w)
            costs_i = self._row_costs(s[i - 1], t[lo - 1:hi]).tolist()
            for j in range(lo, hi + 1):
                diag, up, left = prev_row[j - 1], prev_row[j], row[j - 1]
                if diag <= up and diag <= left:
                    best, step = diag, sprev[j - 1]
                elif up <= left:
                    best, step = up, sprev[j]
                else:
                    best, step = left, srow[j - 1]
                row[j] = costs_i[j - lo] + best
                srow[j] = step + 1

        return cost[n][m], steps[n][m]
