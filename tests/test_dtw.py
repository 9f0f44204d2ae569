"""Tests for banded DTW matching."""

import numpy as np
import pytest

from imu_gestures.config import DTWConfig
from imu_gestures.dtw import DTWMatcher
from imu_gestures.errors import InvalidInput
from imu_gestures.samples import IMUSample


def swipe(n=40, scale=1.0, start=0.0):
    t = np.linspace(0, np.pi, n)
    return [
        IMUSample(start + i * 20.0, scale * float(np.sin(t[i])) * 4.0, 0.0, 9.81)
        for i in range(n)
    ]


def circle(n=40):
    t = np.linspace(0, 2 * np.pi, n)
    return [IMUSample(i * 20.0, 3 * float(np.cos(x)), 3 * float(np.sin(x)), 9.81) for i, x in enumerate(t)]


class TestDistance:
    def test_self_distance_is_zero(self):
        m = DTWMatcher()
        seq = swipe()
        assert m.distance(seq, seq) == pytest.approx(0.0)

    def test_self_confidence_is_one(self):
        m = DTWMatcher()
        seq = circle()
        assert m.confidence(m.distance(seq, seq), 0.5) == 1.0

    def test_symmetric_for_equal_lengths(self):
        m = DTWMatcher()
        a, b = swipe(), circle()
        assert m.distance(a, b) == pytest.approx(m.distance(b, a))

    def test_similar_closer_than_different(self):
        m = DTWMatcher()
        base = swipe()
        assert m.distance(base, swipe(scale=1.1)) < m.distance(base, circle())

    def test_time_warped_copy_is_close(self):
        m = DTWMatcher()
        base = swipe(40)
        slow = swipe(55)
        assert m.distance(base, slow) < 0.3

    def test_constant_offset_normalized_by_max_length(self):
        m = DTWMatcher()
        zeros = np.zeros((40, 3))
        shifted = np.full((40, 3), 0.0)
        shifted[:, 0] = 0.9
        assert m.distance(zeros, shifted) == pytest.approx(0.9)

    def test_band_widened_for_length_difference(self):
        m = DTWMatcher(DTWConfig(radius=1))
        d = m.distance(np.zeros((5, 3)), np.zeros((30, 3)))
        assert d == pytest.approx(0.0)

    def test_single_sample_sequences(self):
        m = DTWMatcher()
        a = np.array([[1.0, 0.0, 0.0]])
        b = np.array([[1.0, 0.0, 0.0], [3.0, 0.0, 0.0]])
        assert m.distance(a, b) == pytest.approx(1.0)

    def test_path_normalization(self):
        m = DTWMatcher(DTWConfig(normalization="path"))
        a = np.zeros((10, 3))
        b = np.ones((10, 3))
        # Diagonal path: 10 steps, each costing sqrt(3)
        assert m.distance(a, b) == pytest.approx(np.sqrt(3))

    def test_axis_weights(self):
        m = DTWMatcher(DTWConfig(axis_weights=[1.0, 0.0, 0.0]))
        a = np.zeros((5, 3))
        b = np.zeros((5, 3))
        b[:, 1] = 10.0
        assert m.distance(a, b) == pytest.approx(0.0)

    def test_six_axes_uses_gyro(self):
        m = DTWMatcher(DTWConfig(axes=6))
        a = [IMUSample(i, 0, 0, 1, gx=0.0) for i in range(5)]
        b = [IMUSample(i, 0, 0, 1, gx=2.0) for i in range(5)]
        assert m.distance(a, b) == pytest.approx(2.0)

    def test_wide_band_matches_full_dtw(self):
        rng = np.random.default_rng(7)
        a, b = rng.normal(size=(12, 3)), rng.normal(size=(15, 3))
        local = np.sqrt(((a[:, None, :] - b[None, :, :]) ** 2).sum(axis=2))
        acc = np.full((13, 16), np.inf)
        acc[0, 0] = 0.0
        for i in range(1, 13):
            for j in range(1, 16):
                acc[i, j] = local[i - 1, j - 1] + min(acc[i - 1, j - 1], acc[i - 1, j], acc[i, j - 1])
        m = DTWMatcher(DTWConfig(radius=20))
        assert m.distance(a, b) == pytest.approx(acc[12, 15] / 15)

    def test_local_costs_limited_to_band(self, monkeypatch):
        m = DTWMatcher(DTWConfig(radius=3))
        cells = []
        original = m._row_costs

        def counting(x, t):
            cells.append(len(t))
            return original(x, t)

        monkeypatch.setattr(m, "_row_costs", counting)
        m.distance(np.zeros((200, 3)), np.ones((200, 3)))
        assert len(cells) == 200
        assert max(cells) <= 2 * 3 + 1

    def test_empty_sequence(self):
        with pytest.raises(InvalidInput):
            DTWMatcher().distance([], swipe())

    def test_dimension_mismatch(self):
        with pytest.raises(InvalidInput):
            DTWMatcher().distance(np.zeros((4, 2)), np.zeros((4, 3)))


class TestConfidence:
    @pytest.mark.parametrize("distance,max_distance,expected", [
        (0.0, 0.2, 1.0),
        (0.1, 0.2, 0.5),
        (0.9, 0.2, 0.0),
        (0.0, 0.0, 1.0),
        (0.1, 0.0, 0.0),
        (float("nan"), 1.0, 0.0),
    ])
    def test_mapping(self, distance, max_distance, expected):
        assert DTWMatcher.confidence(distance, max_distance) == pytest.approx(expected)


class TestBestMatch:
    def test_picks_closest_template(self):
        m = DTWMatcher()
        dist, idx = m.best_match(swipe(), [circle(), swipe(scale=1.05), swipe(scale=2.0)])
        assert idx == 1
        assert dist < 0.5

    def test_no_templates(self):
        with pytest.raises(InvalidInput):
            DTWMatcher().best_match(swipe(), [])


class TestConsistency:
    def test_identical_is_one(self):
        m = DTWMatcher()
        assert m.consistency([swipe(), swipe(), swipe()]) == pytest.approx(1.0)

    def test_single_sequence(self):
        assert DTWMatcher().consistency([swipe()]) == 1.0

    def test_spread_lowers_consistency(self):
        m = DTWMatcher()
        tight = m.consistency([swipe(), swipe(scale=1.05)])
        loose = m.consistency([swipe(), circle()])
        assert 0.0 < loose < tight <= 1.0

    def test_max_pairwise_distance(self):
        m = DTWMatcher()
        a, b, c = swipe(), swipe(scale=1.1), circle()
        assert m.max_pairwise_distance([a, b, c]) == pytest.approx(
            max(m.distance(a, b), m.distance(a, c), m.distance(b, c))
        )
