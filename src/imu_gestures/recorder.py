"""Guided template recording.

A session walks through countdown -> recording for each repetition, then
review once enough repetitions are captured:

    idle -> countdown -> recording -> countdown -> ... -> review -> idle

The session is a frozen `RecorderState`; `transition()` is a pure function
from (state, event) to (new state, effects). `Recorder` wraps it, runs the
effects (event emission, registration). Time comes from sample timestamps;
an injected clock only fills in for calls made without `now`. A session
started with no time anchors its countdown on the first sample it sees.

Usage:
    recorder = Recorder(library)
    recorder.on("countdown_tick", lambda remaining: print(remaining))
    recorder.start_session("swipe-right", "Swipe right")
    recorder.feed(samples)           # repeat as samples arrive
    definition = recorder.finalize_session()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Optional, Sequence, Union

import numpy as np

from imu_gestures.calibrator import Calibrator
from imu_gestures.config import RecorderConfig
from imu_gestures.dtw import DTWMatcher
from imu_gestures.events import EventEmitter
from imu_gestures.library import ClassifierKind, GestureDefinition, GestureLibrary, GestureTemplate
from imu_gestures.samples import IMUSample

logger = logging.getLogger("imu_gestures.recorder")


class Phase(Enum):
    IDLE = "idle"
    COUNTDOWN = "countdown"
    RECORDING = "recording"
    REVIEW = "review"


@dataclass(frozen=True)
class RecorderState:
    phase: Phase = Phase.IDLE
    gesture_id: str = ""
    gesture_name: str = ""
    target_count: int = 0
    repetitions: tuple[GestureTemplate, ...] = ()
    capture: tuple[IMUSample, ...] = ()
    countdown_ends_at: Optional[float] = None  # None until the first time is seen
    countdown_remaining: int = 0
    capture_started_at: Optional[float] = None
    motion_seen: bool = False
    consistency_score: Optional[float] = None

    @property
    def current_index(self) -> int:
        return len(self.repetitions)

    @property
    def active(self) -> bool:
        return self.phase is not Phase.IDLE

    def session(self) -> Optional[dict]:
        """Public view of the running session, or None when idle."""
        if not self.active:
            return None
        return {
            "gesture_id": self.gesture_id,
            "gesture_name": self.gesture_name,
            "phase": self.phase.value,
            "current_index": self.current_index,
            "target_count": self.target_count,
            "repetitions": list(self.repetitions),
            "consistency_score": self.consistency_score,
        }


# Events


@dataclass(frozen=True)
class Start:
    gesture_id: str
    gesture_name: str
    now: Optional[float] = None


@dataclass(frozen=True)
class Tick:
    now: Optional[float] = None


@dataclass(frozen=True)
class Samples:
    samples: tuple[IMUSample, ...]


@dataclass(frozen=True)
class EndCapture:
    now: Optional[float] = None


@dataclass(frozen=True)
class DiscardLast:
    pass


@dataclass(frozen=True)
class RecordAnother:
    now: Optional[float] = None


@dataclass(frozen=True)
class Stop:
    pass


Event = Union[Start, Tick, Samples, EndCapture, DiscardLast, RecordAnother, Stop]


@dataclass(frozen=True)
class Effect:
    topic: str
    payload: Any = None


@dataclass
class _Step:
    """Accumulates effects while one event is applied."""
    state: RecorderState
    effects: list[Effect] = field(default_factory=list)

    def emit(self, topic: str, payload: Any = None):
        self.effects.append(Effect(topic, payload))

    def set_phase(self, phase: Phase, **changes):
        self.state = replace(self.state, phase=phase, **changes)
        self.emit("phase_changed", phase.value)


def transition(
    state: RecorderState,
    event: Event,
    config: RecorderConfig,
    matcher: DTWMatcher,
) -> tuple[RecorderState, list[Effect]]:
    """Apply one event to a recorder state. Pure: same inputs, same outputs."""
    step = _Step(state)

    if isinstance(event, Start):
        if not state.active:
            step.state = RecorderState(
                gesture_id=event.gesture_id,
                gesture_name=event.gesture_name or event.gesture_id,
                target_count=config.target_repetitions,
            )
            _begin_countdown(step, event.now, config)

    elif isinstance(event, Stop):
        if state.active:
            step.state = RecorderState()
            step.emit("phase_changed", Phase.IDLE.value)

    elif isinstance(event, Tick):
        _advance(step, event.now, config, matcher)

    elif isinstance(event, Samples):
        for sample in event.samples:
            _advance(step, sample.timestamp, config, matcher)
            if step.state.phase is Phase.RECORDING:
                _record_sample(step, sample, config, matcher)

    elif isinstance(event, EndCapture):
        if state.phase is Phase.RECORDING:
            now = event.now
            if now is None and state.capture:
                now = state.capture[-1].timestamp
            _end_capture(step, now, "manual", config, matcher)

    elif isinstance(event, DiscardLast):
        if state.phase in (Phase.RECORDING, Phase.REVIEW) and state.repetitions:
            reps = state.repetitions[:-1]
            step.state = replace(state, repetitions=reps)
            if state.phase is Phase.REVIEW:
                step.state = replace(step.state, consistency_score=_consistency(reps, matcher))
            step.emit("repetition_discarded", {"index": len(reps), "reason": "user"})

    elif isinstance(event, RecordAnother):
        if state.phase is Phase.REVIEW:
            step.state = replace(state, target_count=state.target_count + 1, consistency_score=None)
            _begin_countdown(step, event.now, config)

    return step.state, step.effects


def _begin_countdown(step: _Step, now: Optional[float], config: RecorderConfig):
    """Enter countdown. With no time yet, it starts at the next time seen."""
    if config.countdown_seconds <= 0:
        _begin_capture(step, now)
        return
    step.set_phase(
        Phase.COUNTDOWN,
        countdown_ends_at=None if now is None else now + config.countdown_seconds * 1000.0,
        countdown_remaining=config.countdown_seconds,
        capture=(),
    )
    step.emit("countdown_tick", config.countdown_seconds)


def _begin_capture(step: _Step, now: Optional[float]):
    step.set_phase(Phase.RECORDING, capture=(), capture_started_at=now, motion_seen=False)
    step.emit("recording_started", {
        "gesture_id": step.state.gesture_id,
        "index": step.state.current_index,
    })


def _advance(step: _Step, now: Optional[float], config: RecorderConfig, matcher: DTWMatcher):
    if now is None:
        return
    state = step.state
    if state.phase is Phase.COUNTDOWN:
        if state.countdown_ends_at is None:
            step.state = replace(state, countdown_ends_at=now + config.countdown_seconds * 1000.0)
            return
        left_ms = state.countdown_ends_at - now
        if left_ms <= 0:
            _begin_capture(step, state.countdown_ends_at)
            return
        remaining = int(np.ceil(left_ms / 1000.0))
        for second in range(state.countdown_remaining - 1, remaining - 1, -1):
            step.emit("countdown_tick", second)
        if remaining < state.countdown_remaining:
            step.state = replace(state, countdown_remaining=remaining)
    elif state.phase is Phase.RECORDING:
        if state.capture_started_at is None:
            step.state = replace(state, capture_started_at=now)
        elif now - state.capture_started_at >= config.recording_duration_ms:
            _end_capture(step, now, "duration", config, matcher)


def _record_sample(step: _Step, sample: IMUSample, config: RecorderConfig, matcher: DTWMatcher):
    capture = step.state.capture + (sample,)
    motion_seen = step.state.motion_seen
    motion_end = False

    n = config.motion_end_samples
    if len(capture) >= n:
        variance = float(np.var([s.magnitude for s in capture[-n:]]))
        if variance > config.motion_start_variance:
            motion_seen = True
        elif motion_seen and variance < config.motion_end_variance:
            motion_end = True

    step.state = replace(step.state, capture=capture, motion_seen=motion_seen)
    if motion_end:
        _end_capture(step, sample.timestamp, "motion_end", config, matcher)


def _end_capture(step: _Step, now: Optional[float], reason: str, config: RecorderConfig, matcher: DTWMatcher):
    state = step.state
    index = state.current_index

    if len(state.capture) < config.min_samples:
        step.emit("repetition_discarded", {
            "index": index,
            "reason": "too_few_samples",
            "sample_count": len(state.capture),
        })
        _begin_countdown(step, now, config)
        return

    samples = _trim_silence(state.capture, config) if config.auto_trim else state.capture
    if len(samples) < config.min_samples:
        step.emit("repetition_discarded", {
            "index": index,
            "reason": "no_motion_detected",
            "sample_count": len(state.capture),
        })
        _begin_countdown(step, now, config)
        return

    template = GestureTemplate(
        samples=samples,
        recorded_at=state.capture_started_at,
        sample_rate=config.sample_rate,
        metadata={"end_reason": reason},
    )
    reps = state.repetitions + (template,)
    step.state = replace(state, repetitions=reps, capture=())
    step.emit("recording_completed", {
        "gesture_id": state.gesture_id,
        "index": index,
        "sample_count": template.length,
        "end_reason": reason,
        "template": template,
    })

    if len(reps) < state.target_count:
        _begin_countdown(step, now, config)
    else:
        step.set_phase(Phase.REVIEW, consistency_score=_consistency(reps, matcher))


def _trim_silence(capture: tuple[IMUSample, ...], config: RecorderConfig) -> tuple[IMUSample, ...]:
    """Cut leading and trailing still samples, keeping 50 ms of padding."""
    sma = np.array([abs(s.ax) + abs(s.ay) + abs(s.az) for s in capture])
    active = np.flatnonzero(sma > config.trim_threshold)
    if active.size == 0:
        return ()
    pad = int(config.sample_rate * 0.05 + 0.5)
    start = max(0, int(active[0]) - pad)
    end = min(len(capture), int(active[-1]) + pad + 1)
    return capture[start:end]


def _consistency(reps: Sequence[GestureTemplate], matcher: DTWMatcher) -> float:
    return matcher.consistency([t.samples for t in reps])


class Recorder:
    """Runs recording sessions and registers the result in a gesture library."""

    def __init__(
        self,
        library: GestureLibrary,
        calibrator: Optional[Calibrator] = None,
        config: Optional[RecorderConfig] = None,
        clock: Optional[Callable[[], float]] = None,
        emitter: Optional[EventEmitter] = None,
    ):
        self.library = library
        self.config = config or RecorderConfig()
        self.config.validate()
        self.calibrator = calibrator or Calibrator()
        self.matcher = self.calibrator.matcher
        self._clock = clock
        self._emitter = emitter or EventEmitter()
        self._state = RecorderState()

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def is_active(self) -> bool:
        return self._state.active

    @property
    def session(self) -> Optional[dict]:
        return self._state.session()

    def on(self, topic: str, listener: Callable[[Any], None]) -> Callable[[], None]:
        return self._emitter.on(topic, listener)

    def off(self, topic: str, listener: Callable[[Any], None]):
        self._emitter.off(topic, listener)

    def start_session(self, gesture_id: str, gesture_name: str = "", now: Optional[float] = None) -> bool:
        """Begin a session. Returns False (and changes nothing) if one is already running."""
        if self._state.active:
            return False
        self._dispatch(Start(gesture_id, gesture_name, self._now(now)))
        logger.info("Recording session started for '%s'", gesture_id)
        return True

    def feed(self, samples: Sequence[IMUSample]):
        if self._state.active and samples:
            self._dispatch(Samples(tuple(samples)))

    def tick(self, now: Optional[float] = None):
        self._dispatch(Tick(self._now(now)))

    def end_capture(self, now: Optional[float] = None):
        self._dispatch(EndCapture(self._now(now)))

    def discard_last_repetition(self):
        self._dispatch(DiscardLast())

    def record_another(self, now: Optional[float] = None):
        self._dispatch(RecordAnother(self._now(now)))

    def stop_session(self):
        """Abandon the session. Captured repetitions are dropped."""
        if self._state.active:
            logger.info("Recording session for '%s' stopped", self._state.gesture_id)
        self._dispatch(Stop())

    def finalize_session(self, definition: Optional[GestureDefinition] = None) -> Optional[GestureDefinition]:
        """Register the session's gesture and end the session.

        With `definition`, that definition is registered as-is. Otherwise one
        is built from the captured repetitions, with max_distance from the
        calibrator, provided their consistency reaches min_consistency.
        Registration errors propagate; the session still ends.

        Returns:
            The registered definition, or None if nothing was registered.
        """
        state = self._state
        if definition is None and state.repetitions:
            score = state.consistency_score
            if score is None:
                score = _consistency(state.repetitions, self.matcher)
            if score >= self.config.min_consistency:
                definition = GestureDefinition(
                    id=state.gesture_id,
                    name=state.gesture_name,
                    classifier=ClassifierKind.DTW,
                    templates=list(state.repetitions),
                    max_distance=self.calibrator.threshold_for(state.repetitions),
                )
            else:
                logger.warning(
                    "Not registering '%s': consistency %.2f below %.2f",
                    state.gesture_id, score, self.config.min_consistency,
                )

        try:
            if definition is not None:
                self.library.register(definition)
                logger.info(
                    "Finalized '%s' with %d templates (consistency=%s)",
                    definition.id, len(definition.templates), state.consistency_score,
                )
        finally:
            self._dispatch(Stop())

        if state.active:
            self._emitter.emit("session_completed", {
                "gesture_id": state.gesture_id,
                "definition": definition,
                "consistency_score": state.consistency_score,
            })
        return definition

    def _now(self, now: Optional[float]) -> Optional[float]:
        if now is None and self._clock is not None:
            return self._clock()
        return now

    def _dispatch(self, event: Event):
        self._state, effects = transition(self._state, event, self.config, self.matcher)
        for effect in effects:
            if effect.topic == "repetition_discarded":
                logger.warning("Repetition discarded: %s", effect.payload)
            self._emitter.emit(effect.topic, effect.payload)
