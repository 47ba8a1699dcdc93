"""Assessment models: participants and the rows they own.

A Participant is the aggregate root. Answers, signals, flags, and the
radar profile all reference it and are erased together with it. Consent
records live in the consent ledger (``src.security.consent.models``)
and are keyed by subject id so the same ledger serves platform users.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _enum_values(e: type[enum.Enum]) -> list[str]:
    return [x.value for x in e]


class ParticipantStatus(enum.StrEnum):
    """Lifecycle states. ``deleted`` is terminal."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DELETED = "deleted"


class SignalLevel(enum.StrEnum):
    """Ordered per-answer engagement level."""

    LOW = "low"
    EMERGING = "emerging"
    STABLE = "stable"
    MASTERING = "mastering"

    @property
    def value_score(self) -> int:
        return _LEVEL_ORDER.index(self) + 1


_LEVEL_ORDER = [SignalLevel.LOW, SignalLevel.EMERGING, SignalLevel.STABLE, SignalLevel.MASTERING]


class FlagType(enum.StrEnum):
    GARBAGE = "garbage"
    GAMING = "gaming"
    PHOBIC = "phobic"
    DEFENSIVE = "defensive"


class FlagSeverity(enum.StrEnum):
    """Ordered review severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return [FlagSeverity.LOW, FlagSeverity.MEDIUM, FlagSeverity.HIGH].index(self)


class Participant(Base):
    """A person going through the assessment flow.

    At most one non-deleted participant exists per normalized email;
    the partial unique index enforces it at the store level.
    """

    __tablename__ = "bmnl_participants"
    __table_args__ = (
        Index(
            "uq_bmnl_participants_live_email",
            "email",
            unique=True,
            postgresql_where=text("status != 'deleted'"),
            sqlite_where=text("status != 'deleted'"),
        ),
        Index("ix_bmnl_participants_auth_user_id", "auth_user_id"),
        Index("ix_bmnl_participants_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    auth_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    status: Mapped[ParticipantStatus] = mapped_column(
        Enum(ParticipantStatus, values_callable=_enum_values, native_enum=False, length=20),
        default=ParticipantStatus.PENDING,
        nullable=False,
    )
    consent_granted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assessment_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assessment_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    manually_deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    erasure_scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    auto_delete_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    needs_human_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Participant(id={self.id}, status={self.status})>"


class Answer(Base):
    """One answer per (participant, question). ``raw_answer`` holds ciphertext iff ``encrypted``."""

    __tablename__ = "bmnl_answers"
    __table_args__ = (
        UniqueConstraint("participant_id", "question_number", name="uq_bmnl_answers_participant_question"),
        Index("ix_bmnl_answers_participant_id", "participant_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    participant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bmnl_participants.id", ondelete="CASCADE"), nullable=False
    )
    question_number: Mapped[int] = mapped_column(Integer, nullable=False)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    raw_answer: Mapped[str] = mapped_column(Text, nullable=False)
    encrypted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    answered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Answer(participant={self.participant_id}, q={self.question_number}, encrypted={self.encrypted})>"


class AnswerSignal(Base):
    """Signal extracted from an answer's plaintext at submission time.

    Aggregation reads these rows so it never has to decrypt stored answers.
    Internal only: signals are not part of the participant export.
    """

    __tablename__ = "bmnl_signals"
    __table_args__ = (
        UniqueConstraint("participant_id", "question_number", name="uq_bmnl_signals_participant_question"),
        Index("ix_bmnl_signals_participant_id", "participant_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    participant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bmnl_participants.id", ondelete="CASCADE"), nullable=False
    )
    question_number: Mapped[int] = mapped_column(Integer, nullable=False)
    signal_level: Mapped[SignalLevel] = mapped_column(
        Enum(SignalLevel, values_callable=_enum_values, native_enum=False, length=20), nullable=False
    )
    is_garbage: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_gaming: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_phobic: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_defensive: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


class Flag(Base):
    """Advisory review marker on one answer. Immutable except ``reviewed_at``."""

    __tablename__ = "bmnl_flags"
    __table_args__ = (Index("ix_bmnl_flags_participant_id", "participant_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    participant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bmnl_participants.id", ondelete="CASCADE"), nullable=False
    )
    question_number: Mapped[int] = mapped_column(Integer, nullable=False)
    flag_type: Mapped[FlagType] = mapped_column(
        Enum(FlagType, values_callable=_enum_values, native_enum=False, length=20), nullable=False
    )
    flag_reason: Mapped[str] = mapped_column(String(255), nullable=False)
    severity: Mapped[FlagSeverity] = mapped_column(
        Enum(FlagSeverity, values_callable=_enum_values, native_enum=False, length=10), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    def __repr__(self) -> str:
        return f"<Flag(q={self.question_number}, type={self.flag_type}, severity={self.severity})>"


class RadarProfile(Base):
    """Fixed-dimension radar summary, one per participant. Scores are in [0, 1]."""

    __tablename__ = "bmnl_radar_profiles"
    __table_args__ = (UniqueConstraint("participant_id", name="uq_bmnl_radar_profiles_participant"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    participant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bmnl_participants.id", ondelete="CASCADE"), nullable=False
    )
    participation: Mapped[float] = mapped_column(Float, nullable=False)
    consent_literacy: Mapped[float] = mapped_column(Float, nullable=False)
    communal_responsibility: Mapped[float] = mapped_column(Float, nullable=False)
    inclusion_awareness: Mapped[float] = mapped_column(Float, nullable=False)
    self_regulation: Mapped[float] = mapped_column(Float, nullable=False)
    openness_to_learning: Mapped[float] = mapped_column(Float, nullable=False)
    gate_experience: Mapped[float] = mapped_column(Float, nullable=False)
    schema_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    scoring_version: Mapped[str] = mapped_column(String(20), default="v1", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<RadarProfile(participant={self.participant_id})>"


class AnalyticsEventType(enum.StrEnum):
    """Usage events recorded only with active ``analytics`` consent."""

    ONBOARDING_STARTED = "onboarding_started"
    ONBOARDING_COMPLETED = "onboarding_completed"
    ONBOARDING_ABANDONED = "onboarding_abandoned"
    RADAR_VIEWED = "radar_viewed"
    DASHBOARD_VISITED = "dashboard_visited"
    SHARE_CLICKED = "share_clicked"
    COMPATIBILITY_FEEDBACK = "compatibility_feedback"


class AnalyticsEvent(Base):
    """One usage event. ``subject_id`` is a participant or user id, like the consent ledger."""

    __tablename__ = "bmnl_analytics_events"
    __table_args__ = (Index("ix_bmnl_analytics_events_subject_id", "subject_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subject_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    event_type: Mapped[AnalyticsEventType] = mapped_column(
        Enum(AnalyticsEventType, values_callable=_enum_values, native_enum=False, length=40), nullable=False
    )
    event_data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<AnalyticsEvent(subject={self.subject_id}, type={self.event_type})>"
