"""Threshold rules for simple gestures that need no templates.

Each rule inspects one window of samples and either reports a confidence
or nothing. Rules are stateless over windows; repeated detections of the
same motion are held back by the recognizer's cooldown.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

import numpy as np

from imu_gestures.errors import InvalidInput
from imu_gestures.samples import IMUSample


class RuleKind(Enum):
    TAP = "tap"
    DOUBLE_TAP = "double_tap"
    SHAKE = "shake"
    FLICK = "flick"


_AXES = ("magnitude", "x", "y", "z")
_FLICK_FOLLOW_STEPS = 3  # steps after a jerk that must keep its direction


@dataclass
class ThresholdRule:
    """Parameters for a threshold-based gesture."""
    kind: RuleKind
    threshold: float
    axis: str = "magnitude"
    max_peak_ms: float = 200.0  # tap: spike must be shorter than this
    max_interval_ms: float = 400.0  # double tap: max gap between taps
    min_crossings: int = 6  # shake: threshold crossings needed
    shake_window_ms: float = 1000.0

    def validate(self):
        if self.threshold <= 0:
            raise InvalidInput(f"Rule threshold must be positive, got {self.threshold}")
        if self.axis not in _AXES:
            raise InvalidInput(f"Rule axis must be one of {_AXES}, got '{self.axis}'")
        if self.min_crossings < 2:
            raise InvalidInput("Rule min_crossings must be at least 2")
        if self.max_peak_ms <= 0 or self.max_interval_ms <= 0 or self.shake_window_ms <= 0:
            raise InvalidInput("Rule time limits must be positive")

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "threshold": self.threshold,
            "axis": self.axis,
            "max_peak_ms": self.max_peak_ms,
            "max_interval_ms": self.max_interval_ms,
            "min_crossings": self.min_crossings,
            "shake_window_ms": self.shake_window_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ThresholdRule:
        try:
            return cls(
                kind=RuleKind(data["kind"]),
                threshold=float(data["threshold"]),
                axis=data.get("axis", "magnitude"),
                max_peak_ms=float(data.get("max_peak_ms", 200.0)),
                max_interval_ms=float(data.get("max_interval_ms", 400.0)),
                min_crossings=int(data.get("min_crossings", 6)),
                shake_window_ms=float(data.get("shake_window_ms", 1000.0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInput(f"Malformed threshold rule {data!r}: {e}") from e


@dataclass(frozen=True)
class RuleMatch:
    confidence: float
    timestamp: float


def axis_values(samples: Sequence[IMUSample], axis: str = "magnitude") -> np.ndarray:
    if axis == "x":
        return np.array([abs(s.ax) for s in samples], dtype=np.float64)
    if axis == "y":
        return np.array([abs(s.ay) for s in samples], dtype=np.float64)
    if axis == "z":
        return np.array([abs(s.az) for s in samples], dtype=np.float64)
    return np.array([s.magnitude for s in samples], dtype=np.float64)


def evaluate_rule(rule: ThresholdRule, samples: Sequence[IMUSample]) -> Optional[RuleMatch]:
    """Run a rule against a window. Returns the match, or None."""
    if len(samples) < 2:
        return None
    values = axis_values(samples, rule.axis)
    times = np.array([s.timestamp for s in samples], dtype=np.float64)
    return _DETECTORS[rule.kind](rule, values, times)


def _brief_peaks(rule: ThresholdRule, values: np.ndarray, times: np.ndarray) -> list[int]:
    """Indices of local maxima above threshold whose half-threshold span is short."""
    half = rule.threshold * 0.5
    peaks = []
    for i in range(1, len(values) - 1):
        v = values[i]
        if v > rule.threshold and v > values[i - 1] and v > values[i + 1]:
            start = end = i
            while start > 0 and values[start - 1] > half:
                start -= 1
            while end < len(values) - 1 and values[end + 1] > half:
                end += 1
            if times[end] - times[start] < rule.max_peak_ms:
                peaks.append(i)
    return peaks


def _detect_tap(rule, values, times) -> Optional[RuleMatch]:
    peaks = _brief_peaks(rule, values, times)
    if not peaks:
        return None
    i = max(peaks, key=lambda k: values[k])
    confidence = 0.85 + min(values[i] / (rule.threshold * 3), 0.15)
    return RuleMatch(min(confidence, 1.0), float(times[i]))


def _detect_double_tap(rule, values, times) -> Optional[RuleMatch]:
    peaks = _brief_peaks(rule, values, times)
    for first, second in zip(peaks, peaks[1:]):
        gap = times[second] - times[first]
        if 0 < gap <= rule.max_interval_ms:
            return RuleMatch(0.9, float(times[second]))
    return None


def _detect_shake(rule, values, times) -> Optional[RuleMatch]:
    above = values > rule.threshold
    crossing_times = times[1:][above[1:] != above[:-1]]
    if len(crossing_times) < rule.min_crossings:
        return None

    best_count, best_end = 0, 0.0
    start = 0
    for end in range(len(crossing_times)):
        while crossing_times[end] - crossing_times[start] > rule.shake_window_ms:
            start += 1
        count = end - start + 1
        if count > best_count:
            best_count, best_end = count, float(crossing_times[end])

    if best_count < rule.min_crossings:
        return None
    confidence = 0.7 + (best_count / (rule.min_crossings * 2)) * 0.3
    return RuleMatch(min(confidence, 1.0), best_end)


def _detect_flick(rule, values, times) -> Optional[RuleMatch]:
    for i in range(1, len(values)):
        dt = (times[i] - times[i - 1]) / 1000.0
        if dt <= 0:
            continue
        delta = values[i] - values[i - 1]
        jerk = abs(delta) / dt
        if jerk <= rule.threshold:
            continue
        # A flick keeps moving the same way; oscillation is not a flick
        following = np.diff(values[i - 1:min(i + 5, len(values))])
        if len(following) < _FLICK_FOLLOW_STEPS:
            break
        if np.all(following * delta >= 0):
            confidence = 0.7 + (jerk / (rule.threshold * 3)) * 0.3
            return RuleMatch(min(confidence, 1.0), float(times[i]))
    return None


_DETECTORS: dict[RuleKind, Callable[..., Optional[RuleMatch]]] = {
    RuleKind.TAP: _detect_tap,
    RuleKind.DOUBLE_TAP: _detect_double_tap,
    RuleKind.SHAKE: _detect_shake,
    RuleKind.FLICK: _detect_flick,
}
