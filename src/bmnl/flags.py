"""Flag engine: advisory review flags derived from answer plaintext.

Flags never block a submission. They run on plaintext before any
encryption happens, so flag quality does not depend on key availability.
The heuristic is a pluggable :class:`FlagStrategy`; the default keyword
strategy can be replaced without touching the lifecycle.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

from src.core.models.bmnl import FlagSeverity, FlagType

MIN_ANSWER_LETTERS = 3

FLAG_REASONS: dict[FlagType, str] = {
    FlagType.PHOBIC: "Contains exclusionary language",
    FlagType.GAMING: "Attempts to manipulate system",
    FlagType.GARBAGE: "Low effort or nonsensical response",
    FlagType.DEFENSIVE: "Shows extreme defensiveness",
}

FLAG_SEVERITIES: dict[FlagType, FlagSeverity] = {
    FlagType.PHOBIC: FlagSeverity.HIGH,
    FlagType.GAMING: FlagSeverity.MEDIUM,
    FlagType.GARBAGE: FlagSeverity.LOW,
    FlagType.DEFENSIVE: FlagSeverity.MEDIUM,
}


@dataclass(frozen=True)
class FlagDraft:
    """A flag ready to be persisted against a question."""

    question_number: int
    flag_type: FlagType
    flag_reason: str
    severity: FlagSeverity


class FlagStrategy(Protocol):
    """Given a question and its plaintext answer, produce flag types."""

    def detect(self, question_number: int, text: str) -> list[FlagType]: ...


def _compile(patterns: list[str]) -> re.Pattern[str]:
    return re.compile("|".join(f"(?:{p})" for p in patterns), re.IGNORECASE)


_PLACEHOLDERS = frozenset(
    {"test", "testing", "asdf", "qwerty", "lorem ipsum", "n/a", "na", "none", "nothing", "idk", "blah", "xxx", "..."}
)

_SLURS = _compile([r"\bfags?\b", r"\bfaggots?\b", r"\btrann(?:y|ies)\b", r"\bdykes?\b", r"\bhomos?\b"])

_EXCLUSIONARY = _compile(
    [
        r"\b(?:gays?|lesbians?|queers?|trans(?:gender)?(?: people)?|fat people)\b[^.!?]*"
        r"\b(?:unnatural|disgusting|abnormal|sick|freaks?|perverts?|shouldn'?t be (?:allowed|here))\b",
        r"\b(?:freaks?|perverts?)\b[^.!?]*\b(?:gays?|queers?|trans)\b",
        r"\bdon'?t belong here\b",
    ]
)

_GAMING = _compile(
    [
        r"\bignore (?:all |the )?(?:previous|above|prior)\b",
        r"\bsystem prompt\b",
        r"\byou are now\b",
        r"\bdisregard (?:your|the|all)\b",
        r"\b(?:give|rate|score|mark) me (?:as )?(?:mastering|stable|high|full marks|the highest)\b",
        r"\bwhat (?:do you|does the system) want me to say\b",
    ]
)

_DEFENSIVE = _compile(
    [
        r"\bi thought this was a place where people could be themselves\b",
        r"\bi try not to hurt people in the first place\b",
        r"\bnot my problem\b",
        r"\bthat'?s (?:their|his|her) problem\b",
        r"\bpeople are (?:too|so) sensitive\b",
        r"\bsnowflakes?\b",
        r"\bwhy should i\b",
        r"\bnone of your business\b",
        r"\bi (?:never|don'?t) do anything wrong\b",
    ]
)

_KEYBOARD_MASH = re.compile(r"\b[b-df-hj-np-tv-xz]{6,}\b", re.IGNORECASE)
_REPEATED_CHAR = re.compile(r"([a-z])\1{4,}")


def _is_garbage(text: str) -> bool:
    stripped = text.strip().lower()
    if stripped in _PLACEHOLDERS:
        return True
    letters = sum(1 for ch in stripped if ch.isalpha())
    if letters < MIN_ANSWER_LETTERS:
        return True
    if _KEYBOARD_MASH.search(stripped) or _REPEATED_CHAR.search(stripped):
        return True
    return False


class KeywordFlagStrategy:
    """Deterministic pattern-based flag detection."""

    def detect(self, question_number: int, text: str) -> list[FlagType]:
        found: list[FlagType] = []
        if _SLURS.search(text) or _EXCLUSIONARY.search(text):
            found.append(FlagType.PHOBIC)
        if _GAMING.search(text):
            found.append(FlagType.GAMING)
        if _is_garbage(text):
            found.append(FlagType.GARBAGE)
        if _DEFENSIVE.search(text):
            found.append(FlagType.DEFENSIVE)
        return found


DEFAULT_STRATEGY: FlagStrategy = KeywordFlagStrategy()


def derive_flags(
    question_number: int,
    answer_text: str,
    strategy: FlagStrategy | None = None,
) -> list[FlagDraft]:
    """Derive zero or more review flags for one answer. Pure."""
    detected = (strategy or DEFAULT_STRATEGY).detect(question_number, answer_text)
    drafts: list[FlagDraft] = []
    for flag_type in dict.fromkeys(detected):
        drafts.append(
            FlagDraft(
                question_number=question_number,
                flag_type=flag_type,
                flag_reason=FLAG_REASONS[flag_type],
                severity=FLAG_SEVERITIES[flag_type],
            )
        )
    return drafts


# ---------------------------------------------------------------------------
# Sensitive content detection
# ---------------------------------------------------------------------------

_SENSITIVE_TOPICS = _compile(
    [
        # sexuality / identity
        r"\bgay\b", r"\blesbian\b", r"\bbisexual\b", r"\btrans(?:gender)?\b", r"\bqueer\b",
        r"\blgbtq?\+?", r"\bsexual (?:orientation|identity)\b", r"\bsexuality\b",
        r"\bgender identity\b", r"\bcis\b", r"\bnon-?binary\b", r"\bpansexual\b", r"\basexual\b",
        # race, religion, health
        r"\brac(?:e|ist|ism)\b", r"\bethnicity\b", r"\breligio(?:n|us)\b",
        r"\bmental (?:health|illness)\b", r"\bdepress(?:ion|ed)\b", r"\bsuicid(?:e|al)\b",
        r"\bself-?harm\b", r"\banxiety\b", r"\bpanic attacks?\b", r"\btrauma\b",
    ]
)


def is_sensitive_content(answer_text: str, flag_types: list[FlagType] | None = None) -> bool:
    """Whether an answer touches special-category data and should be encrypted."""
    if not answer_text or not answer_text.strip():
        return False
    if flag_types and FlagType.PHOBIC in flag_types:
        return True
    return bool(_SENSITIVE_TOPICS.search(answer_text))
