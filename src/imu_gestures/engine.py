"""GestureEngine: one object that owns the buffer, library, recognizer and recorder.

Usage:
    engine = GestureEngine()
    engine.register_gesture(GestureDefinition(id="swipe-right", templates=[template]))
    engine.on("gesture", lambda result: print(result.gesture_id, result.confidence))
    engine.start()

    # As samples arrive (strictly increasing timestamps):
    engine.feed_samples(batch)

All work happens synchronously inside the calling method. The engine does
no I/O; persist `export_library()` snapshots yourself.
"""

from __future__ import annotations

import functools
import logging
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Union

from imu_gestures.activity import ActivityClassifier, ActivityContext
from imu_gestures.calibrator import Calibrator
from imu_gestures.config import EngineConfig
from imu_gestures.dtw import DTWMatcher
from imu_gestures.errors import Disposed, GestureEngineError, InvalidInput
from imu_gestures.events import EventEmitter
from imu_gestures.feedback import FalsePositiveMetrics
from imu_gestures.library import GestureDefinition, GestureLibrary, GestureTemplate, TemplateLike
from imu_gestures.metrics import MetricsCollector
from imu_gestures.recognizer import RecognitionResult, Recognizer
from imu_gestures.recorder import Recorder
from imu_gestures.samples import IMUSample, SampleBuffer

logger = logging.getLogger("imu_gestures.engine")


class EngineState(Enum):
    IDLE = "idle"
    LISTENING = "listening"
    ARMED = "armed"
    RECORDING = "recording"
    PAUSED = "paused"
    DISPOSED = "disposed"


_RUNNING = (EngineState.LISTENING, EngineState.ARMED)


def _reports_errors(method):
    """Emit engine errors to 'error' listeners before re-raising them."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except GestureEngineError as e:
            self._emitter.emit("error", e)
            raise

    return wrapper


class GestureEngine:
    """Real-time IMU gesture recognition.

    Lifecycle: idle -> listening/armed (start) -> idle (stop), with
    recording and paused entered from and returning to a running state.
    `dispose()` is terminal.

    Events: state_changed, error, gesture, result, armed_state_changed,
    recalibration_needed, activity_changed, and the recorder's
    phase_changed, countdown_tick, recording_started, recording_completed,
    repetition_discarded, session_completed.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = (config or EngineConfig()).validate()
        self._emitter = EventEmitter()

        self.buffer = SampleBuffer(self.config.buffer.capacity)
        self.activity_classifier = ActivityClassifier(self.config.activity)
        self.matcher = DTWMatcher(self.config.dtw)
        self.library = GestureLibrary()
        self.feedback = FalsePositiveMetrics(self.config.recognizer)
        self.recognizer = Recognizer(self.library, self.matcher, self.feedback, self.config.recognizer)
        self.calibrator = Calibrator(self.matcher, self.config.calibrator)
        self.recorder = Recorder(
            self.library,
            calibrator=self.calibrator,
            config=self.config.recorder,
            clock=clock,
            emitter=self._emitter,
        )
        self.metrics = MetricsCollector()

        self._state = EngineState.IDLE
        self._resume_to: Optional[EngineState] = None
        self._after_recording: Optional[EngineState] = None
        self._total_samples = 0

    # Events

    def on(self, topic: str, listener: Callable[[Any], None]) -> Callable[[], None]:
        """Subscribe to an event. Returns a callable that unsubscribes."""
        self._ensure_alive()
        return self._emitter.on(topic, listener)

    def off(self, topic: str, listener: Callable[[Any], None]):
        self._emitter.off(topic, listener)

    # Lifecycle

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def activity(self) -> ActivityContext:
        return self.activity_classifier.context

    @_reports_errors
    def start(self):
        """Begin listening. No-op unless idle."""
        self._ensure_alive()
        if self._state is not EngineState.IDLE:
            return
        self.recognizer.start()
        self._set_state(EngineState.LISTENING)

    @_reports_errors
    def stop(self):
        """Stop listening (or recording) and clear the buffer and recognizer state."""
        self._ensure_alive()
        if self._state is EngineState.IDLE:
            return
        was_armed = self.recognizer.is_armed
        if self.recorder.is_active:
            self.recorder.stop_session()
        self.recognizer.stop()
        self.buffer.clear()
        self.activity_classifier.reset()
        self._resume_to = None
        self._after_recording = None
        if was_armed:
            self._emitter.emit("armed_state_changed", self.recognizer.armed_state())
        self._set_state(EngineState.IDLE)

    @_reports_errors
    def pause(self):
        """Suspend processing. Buffer, recognizer and session state are kept."""
        self._ensure_alive()
        if self._state is EngineState.PAUSED:
            return
        self._resume_to = self._state
        self._set_state(EngineState.PAUSED)

    @_reports_errors
    def resume(self):
        """Return to the state held before `pause()`."""
        self._ensure_alive()
        if self._state is not EngineState.PAUSED:
            return
        target, self._resume_to = self._resume_to or EngineState.IDLE, None
        self._set_state(target)

    def dispose(self):
        """Release everything. The engine cannot be used afterwards."""
        if self._state is EngineState.DISPOSED:
            return
        if self.recorder.is_active:
            self.recorder.stop_session()
        self.recognizer.stop()
        self.buffer.clear()
        self._set_state(EngineState.DISPOSED)
        self._emitter.remove_all_listeners()
        logger.info("Engine disposed")

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.dispose()

    # Ingestion

    @_reports_errors
    def feed_samples(self, samples: Iterable[IMUSample]) -> Optional[RecognitionResult]:
        """Ingest a batch of samples in strictly increasing timestamp order.

        The batch is validated before anything changes. While recording the
        samples go to the recorder; while listening or armed a recognition
        pass runs over the updated buffer.

        Returns:
            The recognition result of this batch, if a pass produced one.
        """
        if self._state in (EngineState.PAUSED, EngineState.DISPOSED):
            return None

        batch = list(samples)
        self._validate_batch(batch)
        if not batch:
            return None

        with self.metrics.stage("buffer"):
            self.buffer.extend(batch)
        self._total_samples += len(batch)
        self.metrics.record_samples(len(batch))

        with self.metrics.stage("activity"):
            changed = self.activity_classifier.update(batch)
        if changed is not None:
            self._emitter.emit("activity_changed", changed)

        if self._state is EngineState.RECORDING:
            with self.metrics.stage("recording"):
                self.recorder.feed(batch)
            return None

        if self._state not in _RUNNING:
            return None

        was_armed = self.recognizer.is_armed
        with self.metrics.stage("recognition"):
            result = self.recognizer.process(self.buffer, self.activity)
        self._sync_armed(was_armed)

        if result is not None:
            self.metrics.record_result(
                result.gesture_id,
                result.accepted,
                result.rejection_reason.value if result.rejection_reason else None,
            )
            self._emitter.emit("result", result)
            if result.accepted:
                self._emitter.emit("gesture", result)
        return result

    @_reports_errors
    def tick(self, now: Optional[float] = None):
        """Advance recorder timers without samples (countdown, capture timeout)."""
        self._ensure_alive()
        if self._state is EngineState.RECORDING:
            self.recorder.tick(now)

    def _validate_batch(self, batch: list):
        last = self.buffer.last()
        previous = last.timestamp if last is not None else None
        for i, sample in enumerate(batch):
            if not isinstance(sample, IMUSample):
                raise InvalidInput(f"Sample #{i} is not an IMUSample: {sample!r}")
            if previous is not None and sample.timestamp <= previous:
                raise InvalidInput(
                    f"Sample #{i} timestamp {sample.timestamp} is not after {previous}"
                )
            previous = sample.timestamp

    def _sync_armed(self, was_armed: bool):
        is_armed = self.recognizer.is_armed
        if is_armed != was_armed:
            self._emitter.emit("armed_state_changed", self.recognizer.armed_state())
        if self._state in _RUNNING:
            self._set_state(EngineState.ARMED if is_armed else EngineState.LISTENING)

    # Library

    @_reports_errors
    def register_gesture(self, definition: Union[GestureDefinition, dict]) -> GestureDefinition:
        self._ensure_alive()
        if isinstance(definition, dict):
            definition = GestureDefinition.from_dict(definition)
        return self.library.register(definition)

    @_reports_errors
    def remove_gesture(self, gesture_id: str) -> bool:
        """Remove a gesture. Unknown ids are ignored."""
        self._ensure_alive()
        removed = self.library.remove(gesture_id)
        if removed:
            self.feedback.thresholds.forget(gesture_id)
        return removed

    @_reports_errors
    def add_template(self, gesture_id: str, template: TemplateLike) -> GestureTemplate:
        self._ensure_alive()
        return self.library.add_template(gesture_id, template)

    def get_gestures(self) -> list[GestureDefinition]:
        """Copies of all registered gestures, in registration order."""
        return [g.copy() for g in self.library]

    @_reports_errors
    def calibrate(self) -> float:
        """Recompute max_distance for every DTW gesture with two or more templates."""
        self._ensure_alive()
        return self.calibrator.calibrate(self.library)

    def export_library(self) -> dict:
        return self.library.export()

    @_reports_errors
    def import_library(self, snapshot: dict) -> int:
        """Replace the library with a snapshot. Nothing changes if it is rejected."""
        self._ensure_alive()
        count = self.library.import_snapshot(snapshot)
        self.feedback.thresholds.reset()
        return count

    # Recording

    @_reports_errors
    def start_recording(self, gesture_id: str, gesture_name: str = "") -> bool:
        """Start a guided recording session. No-op if one is already running."""
        self._ensure_alive()
        if self._state is EngineState.PAUSED:
            raise InvalidInput("Cannot start recording while paused")
        if self._state is EngineState.RECORDING:
            return False
        last = self.buffer.last()
        self.recorder.start_session(gesture_id, gesture_name, now=last.timestamp if last else None)
        self._after_recording = self._state
        self._set_state(EngineState.RECORDING)
        return True

    @_reports_errors
    def stop_recording(self):
        """Abandon the recording session without registering anything."""
        self._ensure_alive()
        self.recorder.stop_session()
        self._leave_recording()

    @_reports_errors
    def finalize_recording(self, definition: Optional[GestureDefinition] = None) -> Optional[GestureDefinition]:
        """Register the recorded gesture (or `definition`) and end the session."""
        self._ensure_alive()
        try:
            return self.recorder.finalize_session(definition)
        finally:
            self._leave_recording()

    def _leave_recording(self):
        if self._state is EngineState.RECORDING:
            target, self._after_recording = self._after_recording or EngineState.IDLE, None
            self._set_state(target)
        elif self._state is EngineState.PAUSED and self._resume_to is EngineState.RECORDING:
            self._resume_to, self._after_recording = self._after_recording or EngineState.IDLE, None

    # Feedback

    @_reports_errors
    def report_false_positive(self, gesture_id: str):
        """User says an accepted recognition was wrong. Tightens that gesture's threshold."""
        self._ensure_alive()
        self.feedback.report_false_positive(gesture_id, self._base_threshold(gesture_id))
        self.metrics.record_feedback("false_positive")
        if self.feedback.needs_recalibration:
            logger.warning(
                "False-positive rate %.2f above ceiling; recalibration suggested",
                self.feedback.fp_rate,
            )
            self._emitter.emit("recalibration_needed", {
                "gesture_id": gesture_id,
                "fp_rate": self.feedback.fp_rate,
                "total_fp_reported": self.feedback.total_fp_reported,
                "total_accepted": self.feedback.total_accepted,
            })

    @_reports_errors
    def report_true_positive(self, gesture_id: str):
        self._ensure_alive()
        self.feedback.report_true_positive(gesture_id, self._base_threshold(gesture_id))
        self.metrics.record_feedback("true_positive")

    def _base_threshold(self, gesture_id: str) -> float:
        if gesture_id in self.library:
            return self.recognizer.base_threshold(self.library.get(gesture_id))
        return self.config.recognizer.default_min_confidence

    # Diagnostics

    @property
    def active_classifier(self) -> str:
        kinds = {g.classifier for g in self.library.enabled()}
        if not kinds:
            return "none"
        if len(kinds) > 1:
            return "mixed"
        return next(iter(kinds)).value

    def get_diagnostics(self) -> dict:
        """Snapshot of engine state. Reading it changes nothing."""
        return {
            "state": self._state.value,
            "buffer_length": len(self.buffer),
            "buffer_duration_ms": self.buffer.duration_ms,
            "active_classifier": self.active_classifier,
            "total_samples_processed": self._total_samples,
            "registered_gestures": len(self.library),
            "activity": self.activity.to_dict(),
            "armed": self.recognizer.armed_state(),
            "fp_metrics": self.feedback.to_dict(),
            "stage_timings": self.metrics.stage_summary(),
        }

    # Internal

    def _ensure_alive(self):
        if self._state is EngineState.DISPOSED:
            raise Disposed("Engine has been disposed")

    def _set_state(self, state: EngineState):
        if state is self._state:
            return
        previous, self._state = self._state, state
        logger.info("Engine state %s -> %s", previous.value, state.value)
        self._emitter.emit("state_changed", state)
