"""Engine metrics in Prometheus text exposition format.

No client library; the text format is generated directly.

Tracked metrics:
- imu_gestures_samples_total (counter)
- imu_gestures_accepted_total (counter, by gesture id)
- imu_gestures_rejected_total (counter, by reason)
- imu_gestures_feedback_total (counter, by kind: false_positive / true_positive)
- imu_gestures_stage_seconds (histogram, by stage)
"""

from __future__ import annotations

import threading
import time
from collections import Counter, deque
from contextlib import contextmanager
from typing import Iterator

STAGES = ("buffer", "activity", "recognition", "recording")

_LATENCY_BUCKETS = [0.0001, 0.0005, 0.001, 0.002, 0.005, 0.010, 0.020, 0.050]


class _Histogram:
    """Cumulative-bucket histogram."""

    def __init__(self, buckets: list[float]):
        self.buckets = sorted(buckets)
        self.bucket_counts = [0] * len(self.buckets)
        self.count = 0
        self.sum = 0.0

    def observe(self, value: float):
        self.count += 1
        self.sum += value
        for i, b in enumerate(self.buckets):
            if value <= b:
                self.bucket_counts[i] += 1
                break

    def render_lines(self, name: str, labels: str) -> list[str]:
        lines = []
        cumulative = 0
        for b, n in zip(self.buckets, self.bucket_counts):
            cumulative += n
            lines.append(f'{name}_bucket{{{labels},le="{b}"}} {cumulative}')
        lines.append(f'{name}_bucket{{{labels},le="+Inf"}} {self.count}')
        lines.append(f"{name}_sum{{{labels}}} {self.sum:.6f}")
        lines.append(f"{name}_count{{{labels}}} {self.count}")
        return lines


class MetricsCollector:
    """Counters and per-stage latency for one engine.

    Usage:
        metrics = MetricsCollector()
        with metrics.stage("recognition"):
            result = recognizer.process(buffer)
        print(metrics.render())
    """

    def __init__(self, window_size: int = 120):
        self._lock = threading.Lock()
        self._window_size = window_size
        self._start_time = time.time()
        self.reset()

    def reset(self):
        with self._lock:
            self._samples_total = 0
            self._accepted: Counter = Counter()
            self._rejected: Counter = Counter()
            self._feedback: Counter = Counter()
            self._histograms = {s: _Histogram(_LATENCY_BUCKETS) for s in STAGES}
            self._recent: dict[str, deque[float]] = {
                s: deque(maxlen=self._window_size) for s in STAGES
            }

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        """Time the enclosed block as one call of `name`."""
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.observe_stage(name, time.perf_counter() - t0)

    def observe_stage(self, name: str, seconds: float):
        with self._lock:
            if name not in self._histograms:
                self._histograms[name] = _Histogram(_LATENCY_BUCKETS)
                self._recent[name] = deque(maxlen=self._window_size)
            self._histograms[name].observe(seconds)
            self._recent[name].append(seconds * 1000.0)

    def record_samples(self, count: int):
        with self._lock:
            self._samples_total += count

    def record_result(self, gesture_id: str | None, accepted: bool, reason: str | None = None):
        with self._lock:
            if accepted:
                self._accepted[gesture_id] += 1
            else:
                self._rejected[reason or "unknown"] += 1

    def record_feedback(self, kind: str):
        with self._lock:
            self._feedback[kind] += 1

    @property
    def samples_total(self) -> int:
        return self._samples_total

    @property
    def accepted_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._accepted)

    @property
    def rejected_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._rejected)

    def stage_summary(self) -> dict[str, dict]:
        """Recent timing per stage, in milliseconds. Stages never run are left out."""
        summary = {}
        with self._lock:
            for name, recent in self._recent.items():
                if not recent:
                    continue
                ordered = sorted(recent)
                n = len(ordered)
                summary[name] = {
                    "avg_ms": round(sum(ordered) / n, 3),
                    "max_ms": round(ordered[-1], 3),
                    "p95_ms": round(ordered[int(n * 0.95)] if n >= 2 else ordered[-1], 3),
                    "calls": self._histograms[name].count,
                }
        return summary

    def render(self) -> str:
        """Render all metrics in Prometheus text exposition format."""
        lines: list[str] = []

        lines.append("# HELP imu_gestures_uptime_seconds Time since the collector was created")
        lines.append("# TYPE imu_gestures_uptime_seconds gauge")
        lines.append(f"imu_gestures_uptime_seconds {time.time() - self._start_time:.1f}")
        lines.append("")

        with self._lock:
            lines.append("# HELP imu_gestures_samples_total IMU samples ingested")
            lines.append("# TYPE imu_gestures_samples_total counter")
            lines.append(f"imu_gestures_samples_total {self._samples_total}")
            lines.append("")

            lines.append("# HELP imu_gestures_accepted_total Accepted recognitions by gesture")
            lines.append("# TYPE imu_gestures_accepted_total counter")
            for gid, count in sorted(self._accepted.items()):
                lines.append(f'imu_gestures_accepted_total{{gesture="{gid}"}} {count}')
            lines.append("")

            lines.append("# HELP imu_gestures_rejected_total Rejected recognitions by reason")
            lines.append("# TYPE imu_gestures_rejected_total counter")
            for reason, count in sorted(self._rejected.items()):
                lines.append(f'imu_gestures_rejected_total{{reason="{reason}"}} {count}')
            lines.append("")

            lines.append("# HELP imu_gestures_feedback_total User feedback reports by kind")
            lines.append("# TYPE imu_gestures_feedback_total counter")
            for kind, count in sorted(self._feedback.items()):
                lines.append(f'imu_gestures_feedback_total{{kind="{kind}"}} {count}')
            lines.append("")

            lines.append("# HELP imu_gestures_stage_seconds Processing time per stage")
            lines.append("# TYPE imu_gestures_stage_seconds histogram")
            for name, hist in self._histograms.items():
                lines.extend(hist.render_lines("imu_gestures_stage_seconds", f'stage="{name}"'))
            lines.append("")

        return "\n".join(lines) + "\n"
