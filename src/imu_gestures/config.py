"""Engine configuration.

Every component takes its own dataclass; `EngineConfig` aggregates them and
loads from a plain dict or a YAML file:

    config = EngineConfig.from_yaml("engine.yml")

    # engine.yml
    buffer:
      capacity: 500
    dtw:
      radius: 8
      axes: 6
    recognizer:
      default_cooldown_ms: 1500
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

from imu_gestures.errors import InvalidInput

logger = logging.getLogger("imu_gestures.config")


@dataclass
class BufferConfig:
    capacity: int = 500  # 10 s at 50 Hz

    def validate(self):
        if self.capacity <= 0:
            raise InvalidInput("buffer.capacity must be positive")


@dataclass
class ActivityConfig:
    window: int = 100  # trailing samples used for the variance
    min_samples: int = 10
    # Upper variance bounds of stationary, low and moderate; anything above is high
    thresholds: tuple[float, float, float] = (0.1, 2.0, 8.0)

    def validate(self):
        if self.window <= 0 or self.min_samples <= 0:
            raise InvalidInput("activity.window and activity.min_samples must be positive")
        t = list(self.thresholds)
        if len(t) != 3 or not (0 <= t[0] < t[1] < t[2]):
            raise InvalidInput(f"activity.thresholds must be 3 increasing values, got {t}")


@dataclass
class DTWConfig:
    radius: int = 10  # Sakoe-Chiba band half-width, in samples
    axes: int = 3  # 3 = accelerometer, 6 = accelerometer + gyroscope
    axis_weights: Optional[list[float]] = None
    normalization: str = "max"  # "max" = max(n, m), "path" = warping path length
    consistency_scale: float = 10.0

    def validate(self):
        if self.radius < 0:
            raise InvalidInput("dtw.radius must be >= 0")
        if self.axes not in (3, 6):
            raise InvalidInput("dtw.axes must be 3 or 6")
        if self.axis_weights is not None and len(self.axis_weights) != self.axes:
            raise InvalidInput(
                f"dtw.axis_weights needs {self.axes} entries, got {len(self.axis_weights)}"
            )
        if self.normalization not in ("max", "path"):
            raise InvalidInput("dtw.normalization must be 'max' or 'path'")
        if self.consistency_scale <= 0:
            raise InvalidInput("dtw.consistency_scale must be positive")


@dataclass
class RecognizerConfig:
    default_min_confidence: float = 0.7
    default_cooldown_ms: float = 2000.0
    arming_delay_ms: float = 0.0
    rule_window_ms: float = 1000.0  # window for threshold rules when no template sets it
    # Adaptive thresholds driven by false/true positive reports
    min_confidence_floor: float = 0.35
    max_confidence_ceiling: float = 0.95
    fp_threshold_increase: float = 1.1
    tp_threshold_decrease: float = 0.005
    tp_count_before_relax: int = 20
    # Recalibration prompt
    fp_rate_ceiling: float = 0.3
    min_reports: int = 5
    # Progressive cooldown: scaled by this factor per false positive, capped at max_cooldown_ms
    cooldown_multiplier: float = 2.0
    max_cooldown_ms: float = 60000.0
    # Same gesture again within this window is a duplicate
    dedupe_window_ms: float = 500.0
    max_gestures_per_minute: int = 10  # 0 = unlimited
    # Suppress recognition at or above this activity level; None disables gating
    disable_at_activity: Optional[str] = "high"
    # When set, other gestures are accepted only within activation_timeout_ms of this one
    activation_gesture_id: Optional[str] = None
    activation_timeout_ms: float = 5000.0

    def validate(self):
        if not 0.0 <= self.default_min_confidence <= 1.0:
            raise InvalidInput("recognizer.default_min_confidence must be in [0, 1]")
        if self.default_cooldown_ms < 0 or self.arming_delay_ms < 0:
            raise InvalidInput("recognizer cooldown and arming delay must be >= 0")
        if self.rule_window_ms <= 0:
            raise InvalidInput("recognizer.rule_window_ms must be positive")
        if not 0.0 <= self.min_confidence_floor <= self.max_confidence_ceiling <= 1.0:
            raise InvalidInput("recognizer confidence floor/ceiling must satisfy 0 <= floor <= ceiling <= 1")
        if not 0.0 <= self.fp_rate_ceiling <= 1.0:
            raise InvalidInput("recognizer.fp_rate_ceiling must be in [0, 1]")
        if self.cooldown_multiplier < 1.0:
            raise InvalidInput("recognizer.cooldown_multiplier must be >= 1")
        if self.max_cooldown_ms < 0 or self.dedupe_window_ms < 0:
            raise InvalidInput("recognizer max_cooldown_ms and dedupe_window_ms must be >= 0")
        if self.max_gestures_per_minute < 0:
            raise InvalidInput("recognizer.max_gestures_per_minute must be >= 0")
        if self.disable_at_activity not in (None, "stationary", "low", "moderate", "high"):
            raise InvalidInput(
                f"recognizer.disable_at_activity must be an activity level or null, "
                f"got {self.disable_at_activity!r}"
            )
        if self.activation_timeout_ms <= 0:
            raise InvalidInput("recognizer.activation_timeout_ms must be positive")


@dataclass
class RecorderConfig:
    target_repetitions: int = 5
    countdown_seconds: int = 3
    recording_duration_ms: float = 2500.0
    sample_rate: float = 50.0
    min_samples: int = 10
    # Motion-end heuristic: variance of magnitude over the trailing samples
    motion_end_samples: int = 15
    motion_end_variance: float = 0.05
    motion_start_variance: float = 0.5
    # Leading and trailing samples with |ax|+|ay|+|az| under trim_threshold are cut
    auto_trim: bool = True
    trim_threshold: float = 1.0
    min_consistency: float = 0.7

    def validate(self):
        if self.target_repetitions <= 0:
            raise InvalidInput("recorder.target_repetitions must be positive")
        if self.countdown_seconds < 0:
            raise InvalidInput("recorder.countdown_seconds must be >= 0")
        if self.recording_duration_ms <= 0:
            raise InvalidInput("recorder.recording_duration_ms must be positive")
        if self.min_samples <= 0 or self.motion_end_samples <= 1:
            raise InvalidInput("recorder.min_samples must be > 0 and motion_end_samples > 1")
        if self.motion_end_variance >= self.motion_start_variance:
            raise InvalidInput("recorder.motion_end_variance must be below motion_start_variance")
        if self.trim_threshold < 0:
            raise InvalidInput("recorder.trim_threshold must be >= 0")
        if not 0.0 <= self.min_consistency <= 1.0:
            raise InvalidInput("recorder.min_consistency must be in [0, 1]")


@dataclass
class CalibratorConfig:
    safety_margin: float = 1.5
    default_max_distance: float = 1.0

    def validate(self):
        if self.safety_margin <= 1.0:
            raise InvalidInput("calibrator.safety_margin must be > 1")
        if self.default_max_distance <= 0:
            raise InvalidInput("calibrator.default_max_distance must be positive")


_SECTIONS = {
    "buffer": BufferConfig,
    "activity": ActivityConfig,
    "dtw": DTWConfig,
    "recognizer": RecognizerConfig,
    "recorder": RecorderConfig,
    "calibrator": CalibratorConfig,
}


@dataclass
class EngineConfig:
    buffer: BufferConfig = field(default_factory=BufferConfig)
    activity: ActivityConfig = field(default_factory=ActivityConfig)
    dtw: DTWConfig = field(default_factory=DTWConfig)
    recognizer: RecognizerConfig = field(default_factory=RecognizerConfig)
    recorder: RecorderConfig = field(default_factory=RecorderConfig)
    calibrator: CalibratorConfig = field(default_factory=CalibratorConfig)

    def validate(self) -> EngineConfig:
        for name in _SECTIONS:
            getattr(self, name).validate()
        return self

    def to_dict(self) -> dict:
        data = asdict(self)
        data["activity"]["thresholds"] = list(self.activity.thresholds)
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> EngineConfig:
        data = data or {}
        if not isinstance(data, dict):
            raise InvalidInput(f"Engine config must be a mapping, got {type(data).__name__}")

        sections = {}
        for key, value in data.items():
            section_cls = _SECTIONS.get(key)
            if section_cls is None:
                logger.warning("Ignoring unknown config section '%s'", key)
                continue
            sections[key] = _build_section(key, section_cls, value or {})

        return cls(**sections).validate()

    @classmethod
    def from_yaml(cls, path: str | Path) -> EngineConfig:
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data)

    def to_yaml(self, path: str | Path):
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def _build_section(name: str, section_cls, values: dict):
    if not isinstance(values, dict):
        raise InvalidInput(f"Config section '{name}' must be a mapping")
    known = {f.name for f in fields(section_cls)}
    kwargs = {}
    for key, value in values.items():
        if key not in known:
            logger.warning("Ignoring unknown config key '%s.%s'", name, key)
            continue
        kwargs[key] = value
    if "thresholds" in kwargs:
        kwargs["thresholds"] = tuple(float(t) for t in kwargs["thresholds"])
    try:
        return section_cls(**kwargs)
    except TypeError as e:
        raise InvalidInput(f"Invalid config section '{name}': {e}") from e
