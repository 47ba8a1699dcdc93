"""SQLAlchemy models for the BMNL Radar service.

This package re-exports all models and enums from domain-specific modules
so that code can use ``from src.core.models import X``.
"""

from src.core.models.auth import User, UserRole
from src.core.models.bmnl import (
    AnalyticsEvent,
    AnalyticsEventType,
    Answer,
    AnswerSignal,
    Flag,
    FlagSeverity,
    FlagType,
    Participant,
    ParticipantStatus,
    RadarProfile,
    SignalLevel,
)
from src.security.consent.models import ConsentRecord, ConsentType

__all__ = [
    "AnalyticsEvent",
    "AnalyticsEventType",
    "Answer",
    "AnswerSignal",
    "ConsentRecord",
    "ConsentType",
    "Flag",
    "FlagSeverity",
    "FlagType",
    "Participant",
    "ParticipantStatus",
    "RadarProfile",
    "SignalLevel",
    "User",
    "UserRole",
]
