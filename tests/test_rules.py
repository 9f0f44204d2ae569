"""Tests for threshold rules."""

import numpy as np
import pytest

from imu_gestures.errors import InvalidInput
from imu_gestures.rules import RuleKind, ThresholdRule, evaluate_rule
from imu_gestures.samples import IMUSample


def signal(values, step=20.0):
    """Samples whose acceleration magnitude follows `values` (on the x axis)."""
    return [IMUSample(i * step, float(v), 0.0, 0.0) for i, v in enumerate(values)]


def flat(n, level=1.0):
    return [level] * n


class TestTap:
    def test_brief_spike(self):
        rule = ThresholdRule(RuleKind.TAP, threshold=10.0)
        match = evaluate_rule(rule, signal(flat(10) + [20.0] + flat(10)))
        assert match is not None
        assert match.timestamp == pytest.approx(200.0)
        assert 0.85 <= match.confidence <= 1.0

    def test_below_threshold(self):
        rule = ThresholdRule(RuleKind.TAP, threshold=10.0)
        assert evaluate_rule(rule, signal(flat(10) + [8.0] + flat(10))) is None

    def test_sustained_push_is_not_tap(self):
        rule = ThresholdRule(RuleKind.TAP, threshold=10.0, max_peak_ms=100.0)
        values = flat(5) + [12, 13, 14, 15, 16, 15, 14, 13, 12] + flat(5)
        assert evaluate_rule(rule, signal(values)) is None

    def test_too_short_window(self):
        rule = ThresholdRule(RuleKind.TAP, threshold=10.0)
        assert evaluate_rule(rule, signal([20.0])) is None


class TestDoubleTap:
    def test_two_spikes_close_together(self):
        rule = ThresholdRule(RuleKind.DOUBLE_TAP, threshold=10.0, max_interval_ms=400.0)
        values = flat(5) + [20.0] + flat(8) + [20.0] + flat(5)
        match = evaluate_rule(rule, signal(values))
        assert match is not None
        assert match.confidence == pytest.approx(0.9)

    def test_spikes_too_far_apart(self):
        rule = ThresholdRule(RuleKind.DOUBLE_TAP, threshold=10.0, max_interval_ms=100.0)
        values = flat(5) + [20.0] + flat(20) + [20.0] + flat(5)
        assert evaluate_rule(rule, signal(values)) is None

    def test_single_spike(self):
        rule = ThresholdRule(RuleKind.DOUBLE_TAP, threshold=10.0)
        assert evaluate_rule(rule, signal(flat(5) + [20.0] + flat(5))) is None


class TestShake:
    def test_oscillation(self):
        rule = ThresholdRule(RuleKind.SHAKE, threshold=5.0, min_crossings=6)
        values = [1.0, 9.0] * 10
        match = evaluate_rule(rule, signal(values))
        assert match is not None
        assert 0.7 <= match.confidence <= 1.0

    def test_too_few_crossings(self):
        rule = ThresholdRule(RuleKind.SHAKE, threshold=5.0, min_crossings=6)
        assert evaluate_rule(rule, signal([1.0, 9.0, 1.0, 9.0, 1.0])) is None

    def test_crossings_spread_out(self):
        rule = ThresholdRule(RuleKind.SHAKE, threshold=5.0, min_crossings=6, shake_window_ms=100.0)
        values = [1.0, 9.0] * 10
        assert evaluate_rule(rule, signal(values, step=100.0)) is None


class TestFlick:
    def test_sharp_rise(self):
        # 0 -> 10 over 20 ms is 500 units/s
        rule = ThresholdRule(RuleKind.FLICK, threshold=300.0)
        match = evaluate_rule(rule, signal(flat(5, 0.0) + [10.0, 12.0, 13.0, 13.5, 14.0]))
        assert match is not None
        assert match.timestamp == pytest.approx(100.0)

    def test_slow_change(self):
        rule = ThresholdRule(RuleKind.FLICK, threshold=300.0)
        assert evaluate_rule(rule, signal(np.linspace(0, 5, 20))) is None

    def test_oscillation_is_not_flick(self):
        rule = ThresholdRule(RuleKind.FLICK, threshold=300.0)
        assert evaluate_rule(rule, signal([0.0, 10.0, 0.0, 10.0, 0.0, 10.0])) is None


class TestAxis:
    def test_single_axis(self):
        rule = ThresholdRule(RuleKind.TAP, threshold=10.0, axis="y")
        samples = [IMUSample(i * 20.0, 20.0 if i == 5 else 0.0, 0.0, 0.0) for i in range(10)]
        assert evaluate_rule(rule, samples) is None


class TestRuleValidation:
    def test_bad_threshold(self):
        with pytest.raises(InvalidInput):
            ThresholdRule(RuleKind.TAP, threshold=0.0).validate()

    def test_bad_axis(self):
        with pytest.raises(InvalidInput):
            ThresholdRule(RuleKind.TAP, threshold=1.0, axis="w").validate()

    def test_dict_roundtrip(self):
        rule = ThresholdRule(RuleKind.SHAKE, threshold=4.0, min_crossings=8)
        assert ThresholdRule.from_dict(rule.to_dict()) == rule

    def test_from_dict_unknown_kind(self):
        with pytest.raises(InvalidInput):
            ThresholdRule.from_dict({"kind": "wiggle", "threshold": 1.0})
