"""imu-gestures - Real-time IMU gesture recognition with DTW templates."""

__version__ = "0.1.0"

from imu_gestures.samples import IMUSample, SampleBuffer
from imu_gestures.activity import ActivityClassifier, ActivityContext, ActivityLevel
from imu_gestures.dtw import DTWMatcher
from imu_gestures.rules import RuleKind, ThresholdRule
from imu_gestures.library import ClassifierKind, GestureDefinition, GestureLibrary, GestureTemplate
from imu_gestures.recognizer import RecognitionResult, Recognizer, RejectionReason
from imu_gestures.feedback import FalsePositiveMetrics
from imu_gestures.recorder import Phase, Recorder
from imu_gestures.calibrator import Calibrator
from imu_gestures.engine import EngineState, GestureEngine
from imu_gestures.config import EngineConfig
from imu_gestures.events import EventEmitter
from imu_gestures.metrics import MetricsCollector
from imu_gestures.errors import (
    Disposed,
    DuplicateId,
    GestureEngineError,
    ImportRejected,
    InvalidInput,
    NotFound,
)
