"""Radar aggregation: per-answer signals reduced to fixed dimensions.

Each answer is first reduced to a signal (an ordered level plus the
hard flags) from its plaintext at submission time. The radar is then a
pure function of the full signal set and the questionnaire's axis map:

* garbage or gaming anywhere: every dimension 0.0, gate needs orientation
* otherwise per dimension: hybrid = 0.75 * weighted mean + 0.25 * max,
  over level values 1..4, rescaled to [0, 1]
* phobic anywhere: every dimension capped at the "emerging" score
* gate experience: 1.0 (basic) or 0.0 (needs orientation)

Identical inputs always produce identical scores.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from src.bmnl.flags import FlagStrategy, derive_flags
from src.bmnl.questionnaire import DIMENSIONS, GATE_DIMENSION, Questionnaire
from src.core.errors import IncompleteAssessment
from src.core.models.bmnl import FlagType, RadarProfile, SignalLevel

logger = logging.getLogger(__name__)

MEAN_WEIGHT = 0.75
MAX_WEIGHT = 0.25

# Hybrid-score thresholds on the 1..4 level scale.
MASTERING_THRESHOLD = 3.5
STABLE_THRESHOLD = 2.75
EMERGING_THRESHOLD = 1.75

GATE_BASIC = 1.0
GATE_NEEDS_ORIENTATION = 0.0

_SCORE_PRECISION = 4


def level_score(level: SignalLevel) -> float:
    """Canonical [0, 1] score for a level."""
    return (level.value_score - 1) / 3


def score_to_level(score: float) -> SignalLevel:
    hybrid = 1 + 3 * score
    if hybrid >= MASTERING_THRESHOLD:
        return SignalLevel.MASTERING
    if hybrid >= STABLE_THRESHOLD:
        return SignalLevel.STABLE
    if hybrid >= EMERGING_THRESHOLD:
        return SignalLevel.EMERGING
    return SignalLevel.LOW


@dataclass(frozen=True)
class SignalData:
    """Derived, non-sensitive summary of one answer."""

    question_number: int
    level: SignalLevel
    is_garbage: bool = False
    is_gaming: bool = False
    is_phobic: bool = False
    is_defensive: bool = False


@dataclass(frozen=True)
class RadarScores:
    """Aggregated radar. ``dimensions`` maps each configured dimension to [0, 1]."""

    dimensions: dict[str, float]
    gate_experience: float
    scoring_version: str = "v1"

    def levels(self) -> dict[str, SignalLevel]:
        return {name: score_to_level(score) for name, score in self.dimensions.items()}

    @property
    def needs_orientation(self) -> bool:
        return self.gate_experience == GATE_NEEDS_ORIENTATION

    def as_dict(self) -> dict[str, float]:
        return {**self.dimensions, GATE_DIMENSION: self.gate_experience}


# ---------------------------------------------------------------------------
# Signal extraction
# ---------------------------------------------------------------------------

_WORD = re.compile(r"[A-Za-z']+")

_LOW_CUES = re.compile(
    r"\b(?:if (?:it'?s )?needed|maybe|possibly|perhaps|not sure|don'?t know|no idea|whatever|"
    r"good parties|if i have time|we'?ll see)\b",
    re.IGNORECASE,
)

_REFLECTIVE_MARKERS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bbecause\b",
        r"\bi(?:'ve| have)? learn(?:ed|t)\b",
        r"\bi (?:try|tend) to\b",
        r"\bi would\b",
        r"\b(?:ask|asking|check(?:ing)? in)\b",
        r"\blisten",
        r"\bapologi[sz]e",
        r"\backnowledge",
        r"\breflect",
        r"\bfor example\b",
        r"\brealis|realiz",
        r"\bboundar",
        r"\bconsent\b",
        r"\b(?:volunteer|commit|contribute|gift|help)",
        r"\b(?:take|taking) (?:space|a break)\b",
    )
]


def _base_level(word_count: int, markers: int) -> SignalLevel:
    if word_count < 8:
        return SignalLevel.LOW
    if word_count < 20:
        return SignalLevel.EMERGING
    if word_count < 45:
        return SignalLevel.STABLE if markers >= 1 else SignalLevel.EMERGING
    if markers >= 3:
        return SignalLevel.MASTERING
    return SignalLevel.STABLE if markers >= 1 else SignalLevel.EMERGING


def extract_signal(question_number: int, text: str, flag_types: Iterable[FlagType] = ()) -> SignalData:
    """Reduce one plaintext answer to a signal. Deterministic."""
    flags = set(flag_types)
    is_garbage = FlagType.GARBAGE in flags
    is_gaming = FlagType.GAMING in flags
    is_phobic = FlagType.PHOBIC in flags
    is_defensive = FlagType.DEFENSIVE in flags

    if is_garbage or is_gaming:
        level = SignalLevel.LOW
    else:
        word_count = len(_WORD.findall(text))
        markers = sum(1 for marker in _REFLECTIVE_MARKERS if marker.search(text))
        level = _base_level(word_count, markers)
        hedged = _LOW_CUES.search(text) is not None
        # Hedged, defensive, or exclusionary answers never rise above emerging.
        if (hedged or is_defensive or is_phobic) and level.value_score > SignalLevel.EMERGING.value_score:
            level = SignalLevel.EMERGING
        if hedged and word_count < 25:
            level = SignalLevel.LOW

    return SignalData(
        question_number=question_number,
        level=level,
        is_garbage=is_garbage,
        is_gaming=is_gaming,
        is_phobic=is_phobic,
        is_defensive=is_defensive,
    )


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def _hybrid(contributions: list[tuple[int, float]]) -> float | None:
    total_weight = sum(w for _, w in contributions)
    if not contributions or total_weight == 0:
        return None
    weighted_mean = sum(v * w for v, w in contributions) / total_weight
    max_value = max(v for v, _ in contributions)
    return MEAN_WEIGHT * weighted_mean + MAX_WEIGHT * max_value


def _gate(levels: dict[str, SignalLevel], defensive_count: int) -> float:
    low_count = sum(1 for level in levels.values() if level == SignalLevel.LOW)
    consent_low = levels.get("consent_literacy") == SignalLevel.LOW
    communal_low = levels.get("communal_responsibility") == SignalLevel.LOW

    if defensive_count >= 2 and consent_low:
        return GATE_NEEDS_ORIENTATION
    if low_count >= 4:
        return GATE_NEEDS_ORIENTATION
    if low_count >= 3 and (consent_low or communal_low):
        return GATE_NEEDS_ORIENTATION
    return GATE_BASIC


def aggregate_signals(signals: Sequence[SignalData], questionnaire: Questionnaire) -> RadarScores:
    """Reduce a full signal set to radar scores. Pure."""
    ordered = sorted(signals, key=lambda s: s.question_number)

    if any(s.is_garbage or s.is_gaming for s in ordered):
        return RadarScores(
            dimensions={dim: 0.0 for dim in questionnaire.dimensions},
            gate_experience=GATE_NEEDS_ORIENTATION,
            scoring_version=questionnaire.scoring_version,
        )

    contributions: dict[str, list[tuple[int, float]]] = {dim: [] for dim in questionnaire.dimensions}
    for signal in ordered:
        for axis, weight in questionnaire.axis_weights(signal.question_number).items():
            if axis in contributions:
                contributions[axis].append((signal.level.value_score, weight))

    dimensions: dict[str, float] = {}
    for dim in questionnaire.dimensions:
        hybrid = _hybrid(contributions[dim])
        if hybrid is None:
            logger.debug("No contributions for axis %s; scoring as emerging", dim)
            dimensions[dim] = round(level_score(SignalLevel.EMERGING), _SCORE_PRECISION)
            continue
        dimensions[dim] = round((hybrid - 1) / 3, _SCORE_PRECISION)

    if any(s.is_phobic for s in ordered):
        cap = round(level_score(SignalLevel.EMERGING), _SCORE_PRECISION)
        dimensions = {dim: min(score, cap) for dim, score in dimensions.items()}

    levels = {dim: score_to_level(score) for dim, score in dimensions.items()}
    gate = _gate(levels, sum(1 for s in ordered if s.is_defensive))

    return RadarScores(
        dimensions=dimensions,
        gate_experience=gate,
        scoring_version=questionnaire.scoring_version,
    )


def scores_from_profile(profile: RadarProfile, dimensions: Iterable[str] = DIMENSIONS) -> RadarScores:
    """Rebuild scores from a stored profile row."""
    return RadarScores(
        dimensions={dim: getattr(profile, dim) for dim in dimensions},
        gate_experience=profile.gate_experience,
        scoring_version=profile.scoring_version,
    )


def compute_radar(
    answers: Sequence[tuple[int, str]],
    questionnaire: Questionnaire,
    strategy: FlagStrategy | None = None,
) -> RadarScores:
    """Compute the radar directly from a complete set of plaintext answers.

    Raises:
        IncompleteAssessment: if any questionnaire question is unanswered.
    """
    by_question = {number: text for number, text in answers}
    missing = [n for n in questionnaire.required_numbers if n not in by_question]
    if missing:
        raise IncompleteAssessment(missing)

    signals = []
    for number in questionnaire.required_numbers:
        text = by_question[number]
        flag_types = [draft.flag_type for draft in derive_flags(number, text, strategy)]
        signals.append(extract_signal(number, text, flag_types))
    return aggregate_signals(signals, questionnaire)
