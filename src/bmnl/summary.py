"""Deterministic per-dimension summary reasons for a completed radar.

Reasons are pattern matches over decrypted answer text, selected by the
dimension's level. No model calls; the same answers and radar always
produce the same reasons. At most three reasons are kept per dimension.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from src.bmnl.radar import RadarScores
from src.core.models.bmnl import SignalLevel

MAX_REASONS_PER_AXIS = 3

_WEAK_LEVELS = frozenset({SignalLevel.LOW, SignalLevel.EMERGING})


@dataclass(frozen=True)
class SummaryReason:
    axis: str
    level: SignalLevel
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {"axis": self.axis, "level": self.level.value, "reasons": list(self.reasons)}


class _Answers:
    """Lower-cased answer lookup by question number."""

    def __init__(self, answers: Mapping[int, str]) -> None:
        self._answers = {n: (text or "").lower() for n, text in answers.items()}

    def text(self, *numbers: int) -> str:
        return " ".join(self._answers.get(n, "") for n in numbers)

    def has(self, number: int, patterns: tuple[str, ...]) -> bool:
        text = self._answers.get(number, "")
        return any(p in text for p in patterns)

    def lacks(self, number: int, patterns: tuple[str, ...]) -> bool:
        return not self.has(number, patterns)


# (predicate, reason) pairs evaluated when the dimension is low or emerging.
_Rule = tuple[Callable[[_Answers], bool], str]

_CONDITIONAL = ("if needed", "if it's needed", "maybe", "possibly", "perhaps")
_UNSURE = ("not sure", "don't know", "uncertain", "unsure", "haven't thought")
_CONSUMING = ("good parties", "fun", "entertainment", "have a good time", "enjoy")
_ASSUMING = ("read the room", "hope", "assume", "intuition", "vibes")
_ASKING = ("ask", "check", "verify", "consent", "permission", "clarify", "confirm")
_CONTRIBUTING = ("share", "contribute", "gift", "care", "help", "support", "community")
_REPAIR = ("apologize", "apologise", "repair", "address", "acknowledge", "learn", "listen")
_SPACE = ("space", "step back", "pause", "rest", "boundaries", "limits")
_RETURN = ("ready", "return", "come back", "reengage", "regroup")
_FEEDBACK = ("listen", "learn", "feedback", "input", "perspective", "understand")

_WEAK_RULES: dict[str, list[_Rule]] = {
    "participation": [
        (lambda a: a.has(9, _CONDITIONAL), "Volunteering commitment is conditional rather than proactive"),
        (lambda a: a.has(10, _UNSURE), "Gifting intentions are vague or uncertain"),
        (lambda a: a.has(11, _CONSUMING), "Focus is on consumption rather than contribution"),
        (
            lambda a: bool(a.text(9).strip()) and a.lacks(9, ("yes", "commit", "volunteer", "help", "shift")),
            "Volunteer commitment lacks clarity or enthusiasm",
        ),
    ],
    "consent_literacy": [
        (lambda a: a.has(5, _ASSUMING), "Relies on assumptions and nonverbal cues rather than explicit check-ins"),
        (lambda a: a.lacks(5, _ASKING), "Missing explicit language about asking for permission or checking boundaries"),
        (
            lambda a: a.has(5, ("hope", "trust", "assume good")),
            "Places responsibility on others to communicate boundaries rather than actively seeking clarity",
        ),
    ],
    "communal_responsibility": [
        (
            lambda a: a.has(8, ("themselves", "freedom", "no rules", "no expectations")),
            "Frames participation as individual expression without communal accountability",
        ),
        (
            lambda a: a.has(11, ("good parties", "fun", "entertainment")) and a.lacks(10, ("help", "contribute", "gift", "care")),
            "Expectations center on receiving rather than contributing to community well-being",
        ),
        (
            lambda a: not any(p in a.text(10, 11) for p in _CONTRIBUTING),
            "Limited language about shared ownership and collective care",
        ),
    ],
    "inclusion_awareness": [
        (
            lambda a: a.has(7, ("try not to hurt", "avoid", "don't want to", "hope not")),
            "Focuses on prevention rather than response and repair when harm occurs",
        ),
        (
            lambda a: a.lacks(7, _REPAIR),
            "Limited language about acknowledging impact and taking responsibility for unintentional harm",
        ),
    ],
    "self_regulation": [
        (
            lambda a: a.lacks(4, _SPACE),
            "Limited articulation of strategies for managing intensity and personal boundaries",
        ),
        (lambda a: a.lacks(4, _RETURN), "Missing language about re-engagement after taking space"),
    ],
    "openness_to_learning": [
        (
            lambda a: a.has(6, ("struggle", "difficulty", "unfamiliar", "hard")) and a.lacks(6, ("would try", "open", "willing", "curious") + _FEEDBACK),
            "Acknowledges gaps but lacks clear articulation of willingness to learn",
        ),
        (lambda a: a.lacks(6, _FEEDBACK), "Limited language about receiving and integrating feedback"),
    ],
}

_STRONG_REASONS: dict[str, str] = {
    "participation": "Shows proactive commitment to volunteering and gifting",
    "consent_literacy": "Demonstrates awareness of checking boundaries and seeking explicit consent",
    "communal_responsibility": "Shows understanding of shared responsibility and community accountability",
    "inclusion_awareness": "Demonstrates awareness of impact and commitment to repair and inclusion",
    "self_regulation": "Demonstrates self-awareness and resilience strategies",
    "openness_to_learning": "Demonstrates curiosity, humility, and receptivity to feedback",
}


def generate_summary_reasons(answers: Mapping[int, str], radar: RadarScores) -> list[SummaryReason]:
    """Build reasons for every radar dimension, in dimension order.

    Args:
        answers: Decrypted answer text keyed by question number.
        radar: The participant's aggregated radar.
    """
    lookup = _Answers(answers)
    summary: list[SummaryReason] = []
    for axis, level in radar.levels().items():
        reasons: list[str] = []
        if level in _WEAK_LEVELS:
            reasons = [reason for predicate, reason in _WEAK_RULES.get(axis, []) if predicate(lookup)]
        elif axis in _STRONG_REASONS:
            reasons = [_STRONG_REASONS[axis]]
        summary.append(SummaryReason(axis=axis, level=level, reasons=reasons[:MAX_REASONS_PER_AXIS]))
    return summary
