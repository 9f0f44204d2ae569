"""Acceptance thresholds derived from how far a gesture's own templates spread."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from imu_gestures.config import CalibratorConfig
from imu_gestures.dtw import DTWMatcher
from imu_gestures.library import ClassifierKind, GestureLibrary, GestureTemplate

logger = logging.getLogger("imu_gestures.calibrator")


class Calibrator:
    """Sets each DTW gesture's max_distance from its intra-class distances.

    max_distance = (largest pairwise distance between its templates) * safety_margin

    Gestures with fewer than two templates are left alone.
    """

    def __init__(self, matcher: Optional[DTWMatcher] = None, config: Optional[CalibratorConfig] = None):
        self.config = config or CalibratorConfig()
        self.config.validate()
        self.matcher = matcher or DTWMatcher()

    def threshold_for(self, templates: Sequence[GestureTemplate]) -> float:
        """Threshold for a template set, or the configured default below two templates."""
        if len(templates) < 2:
            return self.config.default_max_distance
        spread = self.matcher.max_pairwise_distance([t.samples for t in templates])
        return spread * self.config.safety_margin

    def calibrate(self, library: GestureLibrary) -> float:
        """Recompute max_distance for every qualifying gesture.

        Returns:
            The last threshold computed, or 0.0 if no gesture qualified.
        """
        last = 0.0
        for definition in library:
            if definition.classifier is not ClassifierKind.DTW or len(definition.templates) < 2:
                continue
            last = self.threshold_for(definition.templates)
            library.set_max_distance(definition.id, last)
            logger.info("Calibrated '%s': max_distance=%.4f", definition.id, last)
        return last
