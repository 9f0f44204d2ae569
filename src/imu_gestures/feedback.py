"""User feedback on recognitions: false-positive accounting and adaptive thresholds."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Optional

from imu_gestures.config import RecognizerConfig

logger = logging.getLogger("imu_gestures.feedback")


class AdaptiveThresholds:
    """Per-gesture confidence thresholds nudged by user feedback.

    A reported false positive multiplies the gesture's threshold by
    `increase_factor`. After `relax_after` consecutive true positives the
    threshold steps down by `decrease_step`. Thresholds stay within
    [floor, ceiling]; gestures without feedback use their base threshold.
    """

    def __init__(
        self,
        floor: float = 0.35,
        ceiling: float = 0.95,
        increase_factor: float = 1.1,
        decrease_step: float = 0.005,
        relax_after: int = 20,
    ):
        self.floor = floor
        self.ceiling = ceiling
        self._increase_factor = increase_factor
        self._decrease_step = decrease_step
        self._relax_after = relax_after
        self._thresholds: dict[str, float] = {}

    def get_threshold(self, gesture_id: str, base: float) -> float:
        return self._thresholds.get(gesture_id, base)

    def tighten(self, gesture_id: str, base: float) -> float:
        current = self.get_threshold(gesture_id, base)
        self._thresholds[gesture_id] = min(self.ceiling, current * self._increase_factor)
        return self._thresholds[gesture_id]

    def relax(self, gesture_id: str, base: float, consecutive_tp: int) -> float:
        current = self.get_threshold(gesture_id, base)
        if consecutive_tp >= self._relax_after:
            current = max(self.floor, current - self._decrease_step)
            self._thresholds[gesture_id] = current
        return current

    def forget(self, gesture_id: str):
        self._thresholds.pop(gesture_id, None)

    @property
    def current_thresholds(self) -> dict[str, float]:
        return dict(self._thresholds)

    def reset(self):
        self._thresholds.clear()


@dataclass
class GestureFeedback:
    fp_count: int = 0
    tp_count: int = 0


class FalsePositiveMetrics:
    """Counts recognitions and feedback for one engine.

    Only `reset()` clears the counters.
    """

    def __init__(self, config: Optional[RecognizerConfig] = None):
        self.config = config or RecognizerConfig()
        self.thresholds = AdaptiveThresholds(
            floor=self.config.min_confidence_floor,
            ceiling=self.config.max_confidence_ceiling,
            increase_factor=self.config.fp_threshold_increase,
            decrease_step=self.config.tp_threshold_decrease,
            relax_after=self.config.tp_count_before_relax,
        )
        self.reset()

    def reset(self):
        self.total_accepted = 0
        self.total_rejected = 0
        self.total_fp_reported = 0
        self.total_tp_reported = 0
        self.consecutive_fp = 0
        self.consecutive_tp = 0
        self.cooldown_scale = 1.0
        self.per_gesture: dict[str, GestureFeedback] = {}
        self.thresholds.reset()

    def record_result(self, accepted: bool):
        if accepted:
            self.total_accepted += 1
        else:
            self.total_rejected += 1

    def report_false_positive(self, gesture_id: str, base_threshold: float) -> float:
        """Count a false positive, tighten that gesture and lengthen cooldowns.

        Returns the gesture's new threshold.
        """
        self.total_fp_reported += 1
        self.consecutive_fp += 1
        self.consecutive_tp = 0
        self.per_gesture.setdefault(gesture_id, GestureFeedback()).fp_count += 1
        threshold = self.thresholds.tighten(gesture_id, base_threshold)
        self.cooldown_scale = min(
            self.cooldown_scale * self.config.cooldown_multiplier, self._max_cooldown_scale()
        )
        logger.info("False positive on '%s'; threshold now %.3f", gesture_id, threshold)
        return threshold

    def report_true_positive(self, gesture_id: str, base_threshold: float) -> float:
        self.total_tp_reported += 1
        self.consecutive_tp += 1
        self.consecutive_fp = 0
        self.per_gesture.setdefault(gesture_id, GestureFeedback()).tp_count += 1
        if self.consecutive_tp >= self.config.tp_count_before_relax:
            self.cooldown_scale = max(1.0, self.cooldown_scale / self.config.cooldown_multiplier)
        return self.thresholds.relax(gesture_id, base_threshold, self.consecutive_tp)

    def _max_cooldown_scale(self) -> float:
        base = self.config.default_cooldown_ms
        if base <= 0:
            return 1.0
        return max(1.0, self.config.max_cooldown_ms / base)

    @property
    def total_reports(self) -> int:
        return self.total_fp_reported + self.total_tp_reported

    @property
    def fp_rate(self) -> float:
        """Reported false positives per accepted recognition."""
        if self.total_accepted == 0:
            return 1.0 if self.total_fp_reported else 0.0
        return self.total_fp_reported / self.total_accepted

    @property
    def needs_recalibration(self) -> bool:
        return (
            self.total_reports >= self.config.min_reports
            and self.fp_rate > self.config.fp_rate_ceiling
        )

    def to_dict(self) -> dict:
        return {
            "total_accepted": self.total_accepted,
            "total_rejected": self.total_rejected,
            "total_fp_reported": self.total_fp_reported,
            "total_tp_reported": self.total_tp_reported,
            "consecutive_fp": self.consecutive_fp,
            "consecutive_tp": self.consecutive_tp,
            "cooldown_scale": self.cooldown_scale,
            "fp_rate": self.fp_rate,
            "per_gesture": {gid: asdict(fb) for gid, fb in self.per_gesture.items()},
            "adaptive_thresholds": self.thresholds.current_thresholds,
        }
