"""Tests for the online recognizer."""

import numpy as np
import pytest

from imu_gestures.activity import ActivityContext, ActivityLevel
from imu_gestures.config import RecognizerConfig
from imu_gestures.library import ClassifierKind, GestureDefinition, GestureLibrary, GestureTemplate
from imu_gestures.recognizer import Recognizer, RecognizerState, RejectionReason
from imu_gestures.rules import RuleKind, ThresholdRule
from imu_gestures.samples import IMUSample, SampleBuffer

STEP = 20.0


def swipe_values(n=40):
    t = np.linspace(0, np.pi, n)
    return [(4.0 * float(np.sin(x)), 0.5 * float(np.cos(x)), 9.81) for x in t]


def ring_values(n=40, radius=0.9):
    """Constant-magnitude vectors: every one is `radius` away from zero."""
    t = np.linspace(0, 2 * np.pi, n)
    return [(radius * float(np.cos(x)), radius * float(np.sin(x)), 0.0) for x in t]


def to_samples(values, start=0.0):
    return [IMUSample(start + i * STEP, *v) for i, v in enumerate(values)]


def make_recognizer(*definitions, **config):
    lib = GestureLibrary()
    for d in definitions:
        lib.register(d)
    rec = Recognizer(lib, config=RecognizerConfig(**config))
    rec.start()
    return rec


def swipe_gesture(**kwargs):
    template = GestureTemplate(samples=tuple(to_samples(swipe_values())))
    return GestureDefinition(id="swipe-right", templates=[template], **kwargs)


def feed_repeats(rec, repeats):
    """Feed the swipe `repeats` times back to back, one recognition pass each."""
    buf = SampleBuffer(1000)
    results = []
    for k in range(repeats):
        buf.extend(to_samples(swipe_values(), start=k * 40 * STEP))
        results.append(rec.process(buf))
    return results


class TestStates:
    def test_idle_does_nothing(self):
        lib = GestureLibrary()
        lib.register(swipe_gesture())
        rec = Recognizer(lib)
        buf = SampleBuffer()
        buf.extend(to_samples(swipe_values()))
        assert rec.process(buf) is None
        assert rec.state is RecognizerState.IDLE

    def test_listening_until_window_full(self):
        rec = make_recognizer(swipe_gesture())
        buf = SampleBuffer()
        buf.extend(to_samples(swipe_values())[:39])
        assert rec.process(buf) is None
        assert rec.state is RecognizerState.LISTENING

    def test_armed_once_full(self):
        rec = make_recognizer(swipe_gesture())
        buf = SampleBuffer()
        buf.extend(to_samples(swipe_values()))
        rec.process(buf)
        assert rec.is_armed

    def test_empty_buffer(self):
        rec = make_recognizer(swipe_gesture())
        assert rec.process(SampleBuffer()) is None

    def test_stop_returns_to_idle(self):
        rec = make_recognizer(swipe_gesture())
        rec.stop()
        assert rec.state is RecognizerState.IDLE


class TestDecisions:
    def test_exact_template_accepted(self):
        rec = make_recognizer(swipe_gesture())
        buf = SampleBuffer()
        buf.extend(to_samples(swipe_values()))
        result = rec.process(buf)
        assert result.accepted
        assert result.gesture_id == "swipe-right"
        assert result.confidence == pytest.approx(1.0)
        assert result.classifier is ClassifierKind.DTW
        assert result.raw_score == pytest.approx(0.0)

    def test_far_window_below_threshold(self):
        template = GestureTemplate(samples=tuple(to_samples(ring_values())))
        rec = make_recognizer(GestureDefinition(id="swipe-right", templates=[template], max_distance=0.2))
        buf = SampleBuffer()
        buf.extend(to_samples([(0.0, 0.0, 0.0)] * 40))
        result = rec.process(buf)
        assert not result.accepted
        assert result.rejection_reason is RejectionReason.BELOW_THRESHOLD
        assert result.raw_score == pytest.approx(0.9)
        assert result.confidence == 0.0

    def test_no_candidate(self):
        tap = GestureDefinition(
            id="tap", classifier=ClassifierKind.THRESHOLD,
            rule=ThresholdRule(RuleKind.TAP, threshold=30.0),
        )
        rec = make_recognizer(tap)
        buf = SampleBuffer()
        buf.extend(to_samples([(0.0, 0.0, 9.81)] * 20))
        result = rec.process(buf)
        assert not result.accepted
        assert result.rejection_reason is RejectionReason.NO_CANDIDATE
        assert result.gesture_id is None

    def test_threshold_gesture_accepted(self):
        tap = GestureDefinition(
            id="tap", classifier=ClassifierKind.THRESHOLD,
            rule=ThresholdRule(RuleKind.TAP, threshold=25.0),
        )
        rec = make_recognizer(tap)
        values = [(0.0, 0.0, 9.81)] * 10 + [(0.0, 0.0, 30.0)] + [(0.0, 0.0, 9.81)] * 5
        buf = SampleBuffer()
        buf.extend(to_samples(values))
        result = rec.process(buf)
        assert result.accepted
        assert result.classifier is ClassifierKind.THRESHOLD

    def test_best_candidate_wins(self):
        other = GestureDefinition(
            id="ring", templates=[GestureTemplate(samples=tuple(to_samples(ring_values())))],
        )
        rec = make_recognizer(other, swipe_gesture())
        buf = SampleBuffer()
        buf.extend(to_samples(swipe_values()))
        result = rec.process(buf)
        assert result.gesture_id == "swipe-right"
        assert [a["gesture_id"] for a in result.alternatives] == ["ring"]

    def test_per_gesture_min_confidence(self):
        rec = make_recognizer(swipe_gesture(min_confidence=0.99, max_distance=10.0))
        buf = SampleBuffer()
        values = [(x + 5.0, y, z) for x, y, z in swipe_values()]
        buf.extend(to_samples(values))
        result = rec.process(buf)
        assert 0.4 < result.confidence < 0.99
        assert result.rejection_reason is RejectionReason.BELOW_THRESHOLD


class TestCooldown:
    def test_not_accepted_twice_within_cooldown(self):
        rec = make_recognizer(swipe_gesture(), default_cooldown_ms=2000)
        results = feed_repeats(rec, 4)
        assert [r.accepted for r in results] == [True, False, False, True]
        assert results[1].rejection_reason is RejectionReason.IN_COOLDOWN

    def test_definition_cooldown_overrides_default(self):
        rec = make_recognizer(swipe_gesture(cooldown_ms=0), default_cooldown_ms=5000)
        results = feed_repeats(rec, 3)
        assert all(r.accepted for r in results)

    def test_arming_delay_skips_windows(self):
        rec = make_recognizer(swipe_gesture(cooldown_ms=0), arming_delay_ms=1000)
        buf = SampleBuffer(1000)
        buf.extend(to_samples(swipe_values()))
        assert rec.process(buf).accepted
        assert rec.state is RecognizerState.COOLDOWN
        assert rec.armed_state() == {"is_armed": False, "remaining_ms": pytest.approx(1000.0)}

        buf.extend(to_samples(swipe_values(), start=800.0))
        assert rec.process(buf) is None

        buf.extend(to_samples(swipe_values(), start=1600.0))
        assert rec.process(buf).accepted

    def test_reset_clears_cooldown(self):
        rec = make_recognizer(swipe_gesture())
        buf = SampleBuffer(1000)
        buf.extend(to_samples(swipe_values()))
        rec.process(buf)
        rec.reset()
        buf.extend(to_samples(swipe_values(), start=800.0))
        assert rec.process(buf).accepted


class TestFeedbackCounting:
    def test_results_counted(self):
        rec = make_recognizer(swipe_gesture())
        results = feed_repeats(rec, 2)
        assert [r.accepted for r in results] == [True, False]
        assert rec.feedback.total_accepted == 1
        assert rec.feedback.total_rejected == 1

    def test_adaptive_threshold_applies(self):
        rec = make_recognizer(swipe_gesture(max_distance=10.0))
        for _ in range(3):
            rec.feedback.report_false_positive("swipe-right", 0.7)
        assert rec.threshold_for(rec.library.get("swipe-right")) == pytest.approx(0.7 * 1.1 ** 3)


def ring_gesture(gid="ring"):
    return GestureDefinition(id=gid, templates=[GestureTemplate(samples=tuple(to_samples(ring_values())))])


def feed_at(rec, buf, values, start, activity=None):
    buf.extend(to_samples(values, start=start))
    return rec.process(buf, activity)


class TestContextGate:
    def test_high_activity_suppresses(self):
        rec = make_recognizer(swipe_gesture())
        buf = SampleBuffer()
        result = feed_at(rec, buf, swipe_values(), 0.0, ActivityContext(ActivityLevel.HIGH, 12.0, 780.0))
        assert not result.accepted
        assert result.rejection_reason is RejectionReason.CONTEXT_GATE
        assert result.gesture_id == "swipe-right"

    def test_below_gate_level_passes(self):
        rec = make_recognizer(swipe_gesture())
        buf = SampleBuffer()
        result = feed_at(rec, buf, swipe_values(), 0.0, ActivityContext(ActivityLevel.MODERATE, 4.0, 780.0))
        assert result.accepted

    def test_gate_level_configurable(self):
        rec = make_recognizer(swipe_gesture(), disable_at_activity="low")
        buf = SampleBuffer()
        result = feed_at(rec, buf, swipe_values(), 0.0, ActivityContext(ActivityLevel.LOW, 1.0, 780.0))
        assert result.rejection_reason is RejectionReason.CONTEXT_GATE

    def test_gate_disabled(self):
        rec = make_recognizer(swipe_gesture(), disable_at_activity=None)
        buf = SampleBuffer()
        result = feed_at(rec, buf, swipe_values(), 0.0, ActivityContext(ActivityLevel.HIGH, 12.0, 780.0))
        assert result.accepted


class TestActivationGesture:
    def _recognizer(self):
        return make_recognizer(
            swipe_gesture(), ring_gesture(), activation_gesture_id="ring", default_cooldown_ms=0,
        )

    def test_gestures_need_activation(self):
        rec = self._recognizer()
        result = feed_at(rec, SampleBuffer(1000), swipe_values(), 0.0)
        assert not result.accepted
        assert result.rejection_reason is RejectionReason.ACTIVATION_REQUIRED

    def test_activation_opens_one_gesture(self):
        rec = self._recognizer()
        buf = SampleBuffer(1000)
        activation = feed_at(rec, buf, ring_values(), 0.0)
        assert activation.gesture_id == "ring"
        assert not activation.accepted
        assert activation.rejection_reason is RejectionReason.ACTIVATION_CONSUMED

        assert feed_at(rec, buf, swipe_values(), 800.0).accepted
        again = feed_at(rec, buf, swipe_values(), 1600.0)
        assert again.rejection_reason is RejectionReason.ACTIVATION_REQUIRED

    def test_activation_times_out(self):
        rec = self._recognizer()
        buf = SampleBuffer(1000)
        feed_at(rec, buf, ring_values(), 0.0)
        late = feed_at(rec, buf, swipe_values(), 780.0 + 5000.0)
        assert late.rejection_reason is RejectionReason.ACTIVATION_REQUIRED

    def test_reset_clears_activation(self):
        rec = self._recognizer()
        buf = SampleBuffer(1000)
        feed_at(rec, buf, ring_values(), 0.0)
        rec.reset()
        result = feed_at(rec, buf, swipe_values(), 800.0)
        assert result.rejection_reason is RejectionReason.ACTIVATION_REQUIRED


class TestRateLimit:
    def test_per_minute_cap(self):
        rec = make_recognizer(swipe_gesture(cooldown_ms=0), max_gestures_per_minute=2)
        results = feed_repeats(rec, 3)
        assert [r.accepted for r in results] == [True, True, False]
        assert results[2].rejection_reason is RejectionReason.RATE_LIMITED

    def test_cap_frees_after_a_minute(self):
        rec = make_recognizer(swipe_gesture(cooldown_ms=0), max_gestures_per_minute=1)
        buf = SampleBuffer(1000)
        assert feed_at(rec, buf, swipe_values(), 0.0).accepted
        assert feed_at(rec, buf, swipe_values(), 800.0).rejection_reason is RejectionReason.RATE_LIMITED
        assert feed_at(rec, buf, swipe_values(), 60000.0).accepted

    def test_zero_is_unlimited(self):
        rec = make_recognizer(swipe_gesture(cooldown_ms=0), max_gestures_per_minute=0)
        assert all(r.accepted for r in feed_repeats(rec, 12))


class TestDedupeAndProgressiveCooldown:
    def test_repeat_within_dedupe_window(self):
        rec = make_recognizer(swipe_gesture(cooldown_ms=0), dedupe_window_ms=1000)
        results = feed_repeats(rec, 3)
        assert [r.accepted for r in results] == [True, False, True]
        assert results[1].rejection_reason is RejectionReason.IN_COOLDOWN

    def test_false_positive_lengthens_cooldown(self):
        rec = make_recognizer(swipe_gesture(), default_cooldown_ms=1000)
        rec.feedback.report_false_positive("swipe-right", 0.5)
        assert rec.cooldown_for(rec.library.get("swipe-right")) == 2000.0
        assert [r.accepted for r in feed_repeats(rec, 4)] == [True, False, False, True]

    def test_cooldown_capped(self):
        rec = make_recognizer(swipe_gesture(), default_cooldown_ms=1000, max_cooldown_ms=1500)
        for _ in range(3):
            rec.feedback.report_false_positive("swipe-right", 0.5)
        assert rec.cooldown_for(rec.library.get("swipe-right")) == 1500.0
