"""Question bank and question-to-dimension mapping.

The mapping table is configuration: it ships as ``questionnaire.yaml``
next to this module and can be replaced through
``Settings.questionnaire_path`` without touching the aggregation code.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from src.core.errors import ConfigurationError, NotFound

logger = logging.getLogger(__name__)

_DEFAULT_QUESTIONNAIRE_FILE = Path(__file__).parent / "questionnaire.yaml"

# The radar always reports these dimensions, plus gate_experience.
DIMENSIONS: tuple[str, ...] = (
    "participation",
    "consent_literacy",
    "communal_responsibility",
    "inclusion_awareness",
    "self_regulation",
    "openness_to_learning",
)
GATE_DIMENSION = "gate_experience"


@dataclass(frozen=True)
class Question:
    """One prompt and the dimensions its answer contributes to."""

    number: int
    text: str
    axes: dict[str, float] = field(default_factory=dict)
    sensitive: bool = False


@dataclass(frozen=True)
class Questionnaire:
    """Ordered question set plus scoring metadata."""

    questions: dict[int, Question]
    dimensions: tuple[str, ...] = DIMENSIONS
    scoring_version: str = "v1"

    @property
    def required_numbers(self) -> list[int]:
        return sorted(self.questions)

    def question(self, number: int) -> Question:
        try:
            return self.questions[number]
        except KeyError:
            raise NotFound(f"Unknown question number {number}") from None

    def axis_weights(self, number: int) -> dict[str, float]:
        q = self.questions.get(number)
        return dict(q.axes) if q else {}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Questionnaire:
        """Build and validate a questionnaire from its YAML structure."""
        dimensions = tuple(data.get("dimensions") or DIMENSIONS)
        unknown_dims = set(dimensions) - set(DIMENSIONS)
        if unknown_dims:
            raise ConfigurationError(f"Unknown radar dimensions: {sorted(unknown_dims)}")

        questions: dict[int, Question] = {}
        for raw in data.get("questions") or []:
            number = int(raw["number"])
            if number < 1:
                raise ConfigurationError(f"Question numbers start at 1, got {number}")
            if number in questions:
                raise ConfigurationError(f"Duplicate question number {number}")
            axes = {str(k): float(v) for k, v in (raw.get("axes") or {}).items()}
            bad_axes = set(axes) - set(dimensions)
            if bad_axes:
                raise ConfigurationError(f"Question {number} maps to unknown axes {sorted(bad_axes)}")
            if any(w <= 0 for w in axes.values()):
                raise ConfigurationError(f"Question {number} has a non-positive axis weight")
            questions[number] = Question(
                number=number,
                text=str(raw.get("text", "")),
                axes=axes,
                sensitive=bool(raw.get("sensitive", False)),
            )

        if not questions:
            raise ConfigurationError("Questionnaire defines no questions")

        return cls(
            questions=questions,
            dimensions=dimensions,
            scoring_version=str(data.get("scoring_version", "v1")),
        )


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        with path.open("r") as fh:
            return yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Cannot read questionnaire file {path}: {exc}") from exc


@functools.cache
def _default_questionnaire() -> Questionnaire:
    return Questionnaire.from_dict(_load_yaml(_DEFAULT_QUESTIONNAIRE_FILE))


def load_questionnaire(path: str | Path | None = None) -> Questionnaire:
    """Load a questionnaire file, or the bundled default when *path* is None."""
    if path is None:
        return _default_questionnaire()
    questionnaire = Questionnaire.from_dict(_load_yaml(Path(path)))
    logger.info("Loaded questionnaire from %s (%d questions)", path, len(questionnaire.questions))
    return questionnaire
