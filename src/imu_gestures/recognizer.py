"""Online recognition: score the live window against every enabled gesture.

Each pass takes the trailing window of the sample buffer, scores every
enabled gesture (DTW gestures against their templates, threshold gestures
through their rule), and runs the single best candidate through a chain
of guards. The first guard that fails names the rejection reason:

    no_candidate         nothing scored
    context_gate         activity at or above `disable_at_activity`
    activation_consumed  the activation gesture itself; it opens the window
    activation_required  no activation gesture within `activation_timeout_ms`
    below_threshold      confidence under the gesture's adaptive threshold
    in_cooldown          same gesture within its cooldown or the dedupe window
    rate_limit           `max_gestures_per_minute` reached

Time is measured on sample timestamps only, so replaying a recording gives
the same decisions as live input.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence

from imu_gestures.activity import ActivityContext, ActivityLevel
from imu_gestures.config import RecognizerConfig
from imu_gestures.dtw import DTWMatcher
from imu_gestures.feedback import FalsePositiveMetrics
from imu_gestures.library import ClassifierKind, GestureDefinition, GestureLibrary
from imu_gestures.rules import evaluate_rule
from imu_gestures.samples import IMUSample, SampleBuffer

logger = logging.getLogger("imu_gestures.recognizer")

MAX_ALTERNATIVES = 3
RATE_WINDOW_MS = 60000.0

_ACTIVITY_ORDER = [ActivityLevel.STATIONARY, ActivityLevel.LOW, ActivityLevel.MODERATE, ActivityLevel.HIGH]


class RecognizerState(Enum):
    IDLE = "idle"
    LISTENING = "listening"
    ARMED = "armed"
    COOLDOWN = "cooldown"


class RejectionReason(Enum):
    BELOW_THRESHOLD = "below_threshold"
    IN_COOLDOWN = "in_cooldown"
    NO_CANDIDATE = "no_candidate"
    CONTEXT_GATE = "context_gate"
    ACTIVATION_REQUIRED = "activation_required"
    ACTIVATION_CONSUMED = "activation_consumed"
    RATE_LIMITED = "rate_limit"


@dataclass
class Candidate:
    gesture_id: str
    gesture_name: str
    confidence: float
    classifier: ClassifierKind
    raw_score: float


@dataclass
class RecognitionResult:
    """Outcome of one recognition pass."""
    gesture_id: Optional[str]
    gesture_name: Optional[str]
    confidence: float
    accepted: bool
    timestamp: float
    rejection_reason: Optional[RejectionReason] = None
    classifier: Optional[ClassifierKind] = None
    raw_score: Optional[float] = None
    alternatives: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "gesture_id": self.gesture_id,
            "gesture_name": self.gesture_name,
            "confidence": self.confidence,
            "accepted": self.accepted,
            "rejection_reason": self.rejection_reason.value if self.rejection_reason else None,
            "timestamp": self.timestamp,
            "classifier": self.classifier.value if self.classifier else None,
            "raw_score": self.raw_score,
            "alternatives": list(self.alternatives),
        }


class Recognizer:
    """Matches the live buffer against the gesture library.

    States:
        idle       not running
        listening  running, buffer too short to fill a window
        armed      windows are evaluated
        cooldown   arming delay after an acceptance; windows are skipped
    """

    def __init__(
        self,
        library: GestureLibrary,
        matcher: Optional[DTWMatcher] = None,
        feedback: Optional[FalsePositiveMetrics] = None,
        config: Optional[RecognizerConfig] = None,
    ):
        self.library = library
        self.config = config or RecognizerConfig()
        self.config.validate()
        self.matcher = matcher or DTWMatcher()
        self.feedback = feedback or FalsePositiveMetrics(self.config)
        self._state = RecognizerState.IDLE
        self._last_accepted: dict[str, float] = {}
        self._rearm_at = 0.0
        self._last_ts = 0.0
        self._recent: deque[float] = deque()
        self._last_trigger: Optional[tuple[str, float]] = None
        self._activated_until: Optional[float] = None
        self._scorers: dict[
            ClassifierKind, Callable[[GestureDefinition, list[IMUSample]], Optional[Candidate]]
        ] = {
            ClassifierKind.DTW: self._score_dtw,
            ClassifierKind.THRESHOLD: self._score_rule,
        }

    @property
    def state(self) -> RecognizerState:
        return self._state

    @property
    def is_armed(self) -> bool:
        return self._state is RecognizerState.ARMED

    @property
    def remaining_ms(self) -> float:
        """Time left before recognition re-arms after an acceptance."""
        if self._state is not RecognizerState.COOLDOWN:
            return 0.0
        return max(0.0, self._rearm_at - self._last_ts)

    def armed_state(self) -> dict:
        return {"is_armed": self.is_armed, "remaining_ms": self.remaining_ms}

    def start(self):
        if self._state is RecognizerState.IDLE:
            self._state = RecognizerState.LISTENING

    def stop(self):
        self._state = RecognizerState.IDLE
        self.reset()

    def reset(self):
        """Forget cooldowns, rate history, activation and any pending arming delay."""
        self._last_accepted.clear()
        self._rearm_at = 0.0
        self._last_ts = 0.0
        self._recent.clear()
        self._last_trigger = None
        self._activated_until = None
        if self._state is RecognizerState.COOLDOWN:
            self._state = RecognizerState.LISTENING

    def base_threshold(self, definition: GestureDefinition) -> float:
        if definition.min_confidence is not None:
            return definition.min_confidence
        return self.config.default_min_confidence

    def threshold_for(self, definition: GestureDefinition) -> float:
        """Effective acceptance threshold, including feedback adjustments."""
        return self.feedback.thresholds.get_threshold(definition.id, self.base_threshold(definition))

    def cooldown_for(self, definition: GestureDefinition) -> float:
        """Cooldown after an acceptance, lengthened by reported false positives."""
        base = definition.cooldown_ms
        if base is None:
            base = self.config.default_cooldown_ms
        return min(base * self.feedback.cooldown_scale, max(base, self.config.max_cooldown_ms))

    def in_cooldown(self, definition: GestureDefinition, now: float) -> bool:
        if self._last_trigger is not None:
            gesture_id, at = self._last_trigger
            if gesture_id == definition.id and now - at < self.config.dedupe_window_ms:
                return True
        last = self._last_accepted.get(definition.id)
        return last is not None and now - last < self.cooldown_for(definition)

    def rate_limited(self, now: float) -> bool:
        limit = self.config.max_gestures_per_minute
        while self._recent and now - self._recent[0] >= RATE_WINDOW_MS:
            self._recent.popleft()
        return limit > 0 and len(self._recent) >= limit

    def activate(self, now: float):
        """Open the window in which non-activation gestures are accepted."""
        self._activated_until = now + self.config.activation_timeout_ms

    @property
    def activation_pending(self) -> bool:
        return self.config.activation_gesture_id is not None and (
            self._activated_until is None or self._last_ts > self._activated_until
        )

    def gated(self, activity: Optional[ActivityContext]) -> bool:
        level = self.config.disable_at_activity
        if activity is None or level is None:
            return False
        return _ACTIVITY_ORDER.index(activity.level) >= _ACTIVITY_ORDER.index(ActivityLevel(level))

    def required_samples(self) -> int:
        """Samples needed before a window can be evaluated."""
        longest = max(
            (g.max_template_length for g in self.library.enabled(ClassifierKind.DTW)),
            default=0,
        )
        if longest:
            return longest
        return 2 if self.library.enabled(ClassifierKind.THRESHOLD) else 1

    def process(
        self, buffer: SampleBuffer, activity: Optional[ActivityContext] = None,
    ) -> Optional[RecognitionResult]:
        """Run one recognition pass over the buffer's trailing window.

        `activity` feeds the context gate; without it the gate is open.

        Returns None when nothing was evaluated (idle, cooling down, window
        not yet full or empty buffer).
        """
        if self._state is RecognizerState.IDLE:
            return None
        last = buffer.last()
        if last is None:
            return None
        now = self._last_ts = last.timestamp

        if self._state is RecognizerState.COOLDOWN:
            if now < self._rearm_at:
                return None
            self._state = RecognizerState.LISTENING

        required = self.required_samples()
        if len(buffer) < required:
            self._state = RecognizerState.LISTENING
            return None
        self._state = RecognizerState.ARMED

        dtw_window = buffer.latest(required)
        rule_window = self._rule_window(buffer, now)
        candidates = []
        for definition in self.library.enabled():
            window = dtw_window if definition.classifier is ClassifierKind.DTW else rule_window
            candidate = self._scorers[definition.classifier](definition, window)
            if candidate is not None:
                candidates.append(candidate)

        result = self._decide(candidates, now, activity)
        self.feedback.record_result(result.accepted)
        logger.debug(
            "Window @%.0f: %d candidates, best=%s conf=%.3f accepted=%s",
            now, len(candidates), result.gesture_id, result.confidence, result.accepted,
        )
        return result

    def _rule_window(self, buffer: SampleBuffer, now: float) -> list[IMUSample]:
        start = now - self.config.rule_window_ms
        return [s for s in buffer if s.timestamp >= start]

    def _score_dtw(self, definition: GestureDefinition, window: list[IMUSample]) -> Optional[Candidate]:
        if not definition.templates or not window:
            return None
        distance, _ = self.matcher.best_match(window, [t.samples for t in definition.templates])
        return Candidate(
            gesture_id=definition.id,
            gesture_name=definition.name,
            confidence=self.matcher.confidence(distance, definition.max_distance),
            classifier=ClassifierKind.DTW,
            raw_score=distance,
        )

    def _score_rule(self, definition: GestureDefinition, window: list[IMUSample]) -> Optional[Candidate]:
        if definition.rule is None:
            return None
        match = evaluate_rule(definition.rule, window)
        if match is None:
            return None
        return Candidate(
            gesture_id=definition.id,
            gesture_name=definition.name,
            confidence=match.confidence,
            classifier=ClassifierKind.THRESHOLD,
            raw_score=match.confidence,
        )

    def _decide(
        self, candidates: Sequence[Candidate], now: float, activity: Optional[ActivityContext],
    ) -> RecognitionResult:
        if not candidates:
            return RecognitionResult(
                gesture_id=None,
                gesture_name=None,
                confidence=0.0,
                accepted=False,
                timestamp=now,
                rejection_reason=RejectionReason.NO_CANDIDATE,
            )

        # Stable sort keeps registration order among equal confidences
        ranked = sorted(candidates, key=lambda c: c.confidence, reverse=True)
        best = ranked[0]
        definition = self.library.get(best.gesture_id)
        above_threshold = best.confidence >= self.threshold_for(definition)

        reason = None
        if self.gated(activity):
            reason = RejectionReason.CONTEXT_GATE
        elif best.gesture_id == self.config.activation_gesture_id:
            if above_threshold:
                self.activate(now)
                reason = RejectionReason.ACTIVATION_CONSUMED
                logger.info("Activation gesture seen; accepting gestures until %.0f", self._activated_until)
            else:
                reason = RejectionReason.BELOW_THRESHOLD
        elif self.activation_pending:
            reason = RejectionReason.ACTIVATION_REQUIRED
        elif not above_threshold:
            reason = RejectionReason.BELOW_THRESHOLD
        elif self.in_cooldown(definition, now):
            reason = RejectionReason.IN_COOLDOWN
        elif self.rate_limited(now):
            reason = RejectionReason.RATE_LIMITED

        accepted = reason is None
        if accepted:
            self._last_accepted[best.gesture_id] = now
            self._last_trigger = (best.gesture_id, now)
            self._recent.append(now)
            if self.config.activation_gesture_id is not None:
                self._activated_until = None
            if self.config.arming_delay_ms > 0:
                self._state = RecognizerState.COOLDOWN
                self._rearm_at = now + self.config.arming_delay_ms
            logger.info("Recognized '%s' (confidence %.3f)", best.gesture_id, best.confidence)

        return RecognitionResult(
            gesture_id=best.gesture_id,
            gesture_name=best.gesture_name,
            confidence=best.confidence,
            accepted=accepted,
            timestamp=now,
            rejection_reason=reason,
            classifier=best.classifier,
            raw_score=best.raw_score,
            alternatives=[
                {"gesture_id": c.gesture_id, "confidence": c.confidence}
                for c in ranked[1:1 + MAX_ALTERNATIVES]
            ],
        )
