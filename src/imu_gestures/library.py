"""Gesture library: named gestures backed by recorded templates or threshold rules.

Gestures are keyed by id and kept in registration order, so exports are
deterministic. Snapshots are plain JSON-compatible dicts:

    {
      "version": 1,
      "gestures": [
        {"id": "swipe-right", "name": "Swipe right", "classifier": "dtw",
         "max_distance": 0.4, "templates": [{"samples": [...], ...}], ...},
        {"id": "tap", "classifier": "threshold",
         "rule": {"kind": "tap", "threshold": 15.0}, ...}
      ]
    }
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Iterator, Optional, Sequence, Union

from imu_gestures.errors import DuplicateId, ImportRejected, InvalidInput, NotFound
from imu_gestures.rules import ThresholdRule
from imu_gestures.samples import IMUSample

logger = logging.getLogger("imu_gestures.library")

SNAPSHOT_VERSION = 1


class ClassifierKind(Enum):
    DTW = "dtw"
    THRESHOLD = "threshold"


@dataclass(frozen=True)
class GestureTemplate:
    """One recorded exemplar of a gesture. Immutable once created."""

    samples: tuple[IMUSample, ...]
    recorded_at: float = field(default_factory=lambda: time.time() * 1000)
    sample_rate: float = 50.0
    metadata: dict = field(default_factory=dict, compare=False)

    def __post_init__(self):
        samples = tuple(self.samples)
        if not samples:
            raise InvalidInput("Template must contain at least one sample")
        object.__setattr__(self, "samples", samples)

    @property
    def length(self) -> int:
        return len(self.samples)

    @property
    def duration_ms(self) -> float:
        return self.samples[-1].timestamp - self.samples[0].timestamp

    def to_dict(self) -> dict:
        return {
            "samples": [s.to_dict() for s in self.samples],
            "recorded_at": self.recorded_at,
            "sample_rate": self.sample_rate,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict) -> GestureTemplate:
        if not isinstance(data, dict):
            raise InvalidInput(f"Template must be a mapping, got {type(data).__name__}")
        raw = data.get("samples")
        if not isinstance(raw, list):
            raise InvalidInput("Template 'samples' must be a list")
        return cls(
            samples=tuple(IMUSample.from_dict(s) for s in raw),
            recorded_at=float(data.get("recorded_at", 0.0)),
            sample_rate=float(data.get("sample_rate", 50.0)),
            metadata=dict(data.get("metadata") or {}),
        )


TemplateLike = Union[GestureTemplate, Sequence[IMUSample]]


def as_template(template: TemplateLike) -> GestureTemplate:
    if isinstance(template, GestureTemplate):
        return template
    return GestureTemplate(samples=tuple(template))


@dataclass
class GestureDefinition:
    """A recognizable gesture.

    `dtw` gestures match the live window against `templates`; confidence is
    measured relative to `max_distance`. `threshold` gestures evaluate `rule`
    directly. `cooldown_ms` and `min_confidence` fall back to the recognizer
    defaults when left as None.
    """

    id: str
    name: str = ""
    classifier: ClassifierKind = ClassifierKind.DTW
    templates: list[GestureTemplate] = field(default_factory=list)
    rule: Optional[ThresholdRule] = None
    max_distance: float = 1.0
    cooldown_ms: Optional[float] = None
    min_confidence: Optional[float] = None
    description: str = ""
    enabled: bool = True

    def __post_init__(self):
        if not self.name:
            self.name = self.id
        self.templates = [as_template(t) for t in self.templates]

    @property
    def max_template_length(self) -> int:
        return max((t.length for t in self.templates), default=0)

    def problems(self) -> list[str]:
        """Everything wrong with this definition; empty when it is usable."""
        label = self.id or "<no id>"
        found = []
        if not isinstance(self.id, str) or not self.id:
            found.append("gesture id must be a non-empty string")
        if not isinstance(self.classifier, ClassifierKind):
            found.append(f"'{label}': unknown classifier {self.classifier!r}")
        elif self.classifier is ClassifierKind.DTW:
            if not self.templates:
                found.append(f"'{label}': dtw gesture needs at least one template")
        elif self.rule is None:
            found.append(f"'{label}': threshold gesture needs a rule")
        else:
            try:
                self.rule.validate()
            except InvalidInput as e:
                found.append(f"'{label}': {e}")
        if not math.isfinite(self.max_distance) or self.max_distance < 0:
            found.append(f"'{label}': max_distance must be a finite value >= 0")
        if self.cooldown_ms is not None and self.cooldown_ms < 0:
            found.append(f"'{label}': cooldown_ms must be >= 0")
        if self.min_confidence is not None and not 0.0 <= self.min_confidence <= 1.0:
            found.append(f"'{label}': min_confidence must be in [0, 1]")
        return found

    def validate(self):
        found = self.problems()
        if found:
            raise InvalidInput("; ".join(found))

    def copy(self) -> GestureDefinition:
        return replace(self, templates=list(self.templates))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "classifier": self.classifier.value,
            "templates": [t.to_dict() for t in self.templates],
            "rule": self.rule.to_dict() if self.rule else None,
            "max_distance": self.max_distance,
            "cooldown_ms": self.cooldown_ms,
            "min_confidence": self.min_confidence,
            "description": self.description,
            "enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, data: dict) -> GestureDefinition:
        if not isinstance(data, dict):
            raise InvalidInput(f"Gesture entry must be a mapping, got {type(data).__name__}")
        try:
            rule = data.get("rule")
            cooldown = data.get("cooldown_ms")
            min_conf = data.get("min_confidence")
            return cls(
                id=data["id"],
                name=data.get("name", ""),
                classifier=ClassifierKind(data.get("classifier", "dtw")),
                templates=[GestureTemplate.from_dict(t) for t in data.get("templates") or []],
                rule=ThresholdRule.from_dict(rule) if rule else None,
                max_distance=float(data.get("max_distance", 1.0)),
                cooldown_ms=None if cooldown is None else float(cooldown),
                min_confidence=None if min_conf is None else float(min_conf),
                description=data.get("description", ""),
                enabled=bool(data.get("enabled", True)),
            )
        except (KeyError, TypeError, ValueError) as e:
            # InvalidInput is a ValueError, so nested failures land here too
            raise InvalidInput(f"Malformed gesture {data.get('id', '<no id>')!r}: {e}") from e


class GestureLibrary:
    """Registry of gesture definitions, keyed by id."""

    def __init__(self):
        self._gestures: dict[str, GestureDefinition] = {}

    def register(self, definition: GestureDefinition) -> GestureDefinition:
        """Add a gesture. Fails on a duplicate id or a malformed definition."""
        definition.validate()
        if definition.id in self._gestures:
            raise DuplicateId(definition.id)
        self._gestures[definition.id] = definition
        logger.info(
            "Registered gesture '%s' (%s, %d templates)",
            definition.id, definition.classifier.value, len(definition.templates),
        )
        return definition

    def remove(self, gesture_id: str) -> bool:
        """Remove a gesture. Unknown ids are ignored. Returns whether anything was removed."""
        removed = self._gestures.pop(gesture_id, None)
        if removed is not None:
            logger.info("Removed gesture '%s'", gesture_id)
        return removed is not None

    def get(self, gesture_id: str) -> GestureDefinition:
        try:
            return self._gestures[gesture_id]
        except KeyError:
            raise NotFound(gesture_id) from None

    def add_template(self, gesture_id: str, template: TemplateLike) -> GestureTemplate:
        definition = self.get(gesture_id)
        if definition.classifier is not ClassifierKind.DTW:
            raise InvalidInput(f"Gesture '{gesture_id}' uses a threshold rule, not templates")
        tmpl = as_template(template)
        definition.templates.append(tmpl)
        logger.debug("Added template (%d samples) to '%s'", tmpl.length, gesture_id)
        return tmpl

    def remove_template(self, gesture_id: str, index: int) -> GestureTemplate:
        definition = self.get(gesture_id)
        if not -len(definition.templates) <= index < len(definition.templates):
            raise InvalidInput(f"Gesture '{gesture_id}' has no template at index {index}")
        if definition.classifier is ClassifierKind.DTW and len(definition.templates) == 1:
            raise InvalidInput(f"Cannot remove the last template of '{gesture_id}'")
        return definition.templates.pop(index)

    def replace_templates(self, gesture_id: str, templates: Iterable[TemplateLike]):
        definition = self.get(gesture_id)
        new = [as_template(t) for t in templates]
        if definition.classifier is ClassifierKind.DTW and not new:
            raise InvalidInput(f"Gesture '{gesture_id}' needs at least one template")
        definition.templates = new

    def set_max_distance(self, gesture_id: str, value: float):
        if not math.isfinite(value) or value < 0:
            raise InvalidInput(f"max_distance must be a finite value >= 0, got {value}")
        self.get(gesture_id).max_distance = float(value)

    def enabled(self, kind: Optional[ClassifierKind] = None) -> list[GestureDefinition]:
        return [
            g for g in self._gestures.values()
            if g.enabled and (kind is None or g.classifier is kind)
        ]

    @property
    def ids(self) -> list[str]:
        return list(self._gestures)

    def clear(self):
        self._gestures.clear()

    def export(self) -> dict:
        """Snapshot of every gesture and template, in registration order."""
        return {
            "version": SNAPSHOT_VERSION,
            "gestures": [g.to_dict() for g in self._gestures.values()],
        }

    def import_snapshot(self, snapshot: dict) -> int:
        """Replace the library with a snapshot's contents.

        The whole snapshot is validated first; on any problem ImportRejected
        is raised and the library is left exactly as it was.

        Returns:
            Number of gestures imported.
        """
        definitions = parse_snapshot(snapshot)
        self._gestures = {d.id: d for d in definitions}
        logger.info("Imported %d gestures", len(definitions))
        return len(definitions)

    def __contains__(self, gesture_id: object) -> bool:
        return gesture_id in self._gestures

    def __iter__(self) -> Iterator[GestureDefinition]:
        return iter(list(self._gestures.values()))

    def __len__(self) -> int:
        return len(self._gestures)


def parse_snapshot(snapshot: dict) -> list[GestureDefinition]:
    """Validate a snapshot and build its definitions. Raises ImportRejected."""
    if not isinstance(snapshot, dict):
        raise ImportRejected([f"snapshot must be a mapping, got {type(snapshot).__name__}"])
    version = snapshot.get("version")
    if version != SNAPSHOT_VERSION:
        raise ImportRejected([f"unsupported library version: {version!r}"])
    entries = snapshot.get("gestures")
    if not isinstance(entries, list):
        raise ImportRejected(["'gestures' must be a list"])

    problems: list[str] = []
    definitions: list[GestureDefinition] = []
    seen: set[str] = set()
    for i, entry in enumerate(entries):
        try:
            definition = GestureDefinition.from_dict(entry)
        except InvalidInput as e:
            problems.append(f"gesture #{i}: {e}")
            continue
        problems.extend(definition.problems())
        # problems() already reports ids that are not strings
        if isinstance(definition.id, str):
            if definition.id in seen:
                problems.append(f"duplicate gesture id '{definition.id}'")
            seen.add(definition.id)
        definitions.append(definition)

    if problems:
        logger.warning("Rejected library import: %d problems", len(problems))
        raise ImportRejected(problems)
    return definitions
