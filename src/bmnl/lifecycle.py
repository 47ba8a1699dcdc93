"""Participant lifecycle service.

Drives a participant through ``pending -> in_progress -> completed`` and
into the terminal ``deleted`` state. Every submission runs the flag engine
and signal extraction on plaintext first, then encrypts the answer when it
is sensitive, then upserts it. Completion aggregates the stored signals,
so no stored ciphertext is ever decrypted on the scoring path.

The service only flushes; the caller owns the transaction.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.bmnl.flags import FlagDraft, FlagStrategy, derive_flags, is_sensitive_content
from src.bmnl.questionnaire import DIMENSIONS, GATE_DIMENSION, Questionnaire
from src.bmnl.radar import SignalData, aggregate_signals, extract_signal, level_score, score_to_level
from src.core.config import Settings, get_settings
from src.core.encryption import AnswerCipher
from src.core.errors import (
    Forbidden,
    IncompleteAssessment,
    InvalidState,
    NotFound,
    StorageFailure,
    ValidationFailed,
)
from src.core.models.bmnl import (
    Answer,
    AnswerSignal,
    Flag,
    Participant,
    ParticipantStatus,
    RadarProfile,
    SignalLevel,
)
from src.security.consent.models import ConsentType
from src.security.consent.service import ConsentLedger

logger = logging.getLogger(__name__)

RADAR_SCHEMA_VERSION = 1

_Row = TypeVar("_Row", Participant, Answer, AnswerSignal, RadarProfile)


def normalize_email(email: str) -> str:
    """Strip and lower-case an address, rejecting malformed input."""
    candidate = (email or "").strip().lower()
    try:
        validate_email(candidate, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationFailed(f"Invalid email address: {exc}") from exc
    return candidate


@dataclass
class SubmissionResult:
    """Outcome of one answer submission."""

    answer: Answer
    signal_level: SignalLevel
    flags: list[Flag] = field(default_factory=list)
    needs_human_review: bool = False

    @property
    def encrypted(self) -> bool:
        return self.answer.encrypted


class ParticipantService:
    """State machine and submission pipeline for assessment participants."""

    def __init__(
        self,
        session: AsyncSession,
        cipher: AnswerCipher,
        questionnaire: Questionnaire,
        flag_strategy: FlagStrategy | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._cipher = cipher
        self._questionnaire = questionnaire
        self._flag_strategy = flag_strategy
        self._settings = settings or get_settings()
        self._ledger = ConsentLedger(session)

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    async def _find_live(self, email: str, auth_user_id: uuid.UUID | None) -> Participant | None:
        match = Participant.email == email
        if auth_user_id is not None:
            match = match | (Participant.auth_user_id == auth_user_id)
        stmt = (
            select(Participant)
            .where(Participant.status != ParticipantStatus.DELETED, match)
            .order_by(Participant.created_at.asc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def create(
        self,
        email: str,
        auth_user_id: uuid.UUID | None = None,
        consent_text: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Participant:
        """Create a participant, or return the live one for this email.

        Repeat calls are idempotent: the existing participant is returned
        and ``auth_user_id`` is linked if it was not set yet. Either way the
        assessment consent grant is appended to the ledger.

        Raises:
            Forbidden: the live participant is linked to another account.
        """
        normalized = normalize_email(email)
        participant = await self._find_live(normalized, auth_user_id)

        if participant is None:
            now = datetime.now(UTC)
            candidate = Participant(
                email=normalized,
                auth_user_id=auth_user_id,
                status=ParticipantStatus.PENDING,
                consent_granted_at=now,
                auto_delete_at=now + timedelta(days=self._settings.participant_retention_days),
                needs_human_review=False,
                created_at=now,
                updated_at=now,
            )
            # Lost a race on the live-email index: fall back to the winner.
            participant = await self._insert_or_reload(
                candidate, lambda: self._find_live(normalized, auth_user_id)
            )
            if participant is candidate:
                logger.info("Participant %s created", participant.id)
            else:
                self._claim(participant, auth_user_id)
        else:
            self._claim(participant, auth_user_id)

        await self._ledger.record_consent(
            participant.id,
            ConsentType.ASSESSMENT,
            True,
            consent_text=consent_text,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return participant

    def _claim(self, participant: Participant, auth_user_id: uuid.UUID | None) -> None:
        if auth_user_id is None:
            return
        if participant.auth_user_id is None:
            participant.auth_user_id = auth_user_id
            logger.info("Participant %s linked to auth user %s", participant.id, auth_user_id)
        elif participant.auth_user_id != auth_user_id:
            logger.warning("Auth user %s denied access to participant %s", auth_user_id, participant.id)
            raise Forbidden("This email is registered to another account")

    async def _insert_or_reload(self, candidate: _Row, reload: Callable[[], Awaitable[_Row | None]]) -> _Row:
        """Insert ``candidate`` in a savepoint; on a unique conflict return the row that won."""
        # Pending changes must not be rolled back with the savepoint.
        await self._session.flush()
        try:
            async with self._session.begin_nested():
                self._session.add(candidate)
                await self._session.flush()
            return candidate
        except IntegrityError:
            existing = await reload()
            if existing is None:
                raise StorageFailure(f"{type(candidate).__name__} could not be stored") from None
            logger.info("Concurrent insert on %s; continuing with the stored row", type(candidate).__name__)
            return existing

    async def get(self, participant_id: uuid.UUID, include_deleted: bool = False) -> Participant:
        """Load a participant. Deleted participants are hidden unless asked for."""
        participant = await self._session.get(Participant, participant_id)
        if participant is None:
            raise NotFound(f"Participant {participant_id} not found")
        if participant.status == ParticipantStatus.DELETED and not include_deleted:
            raise NotFound(f"Participant {participant_id} not found")
        return participant

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    async def start_assessment(self, participant_id: uuid.UUID) -> Participant:
        participant = await self.get(participant_id)
        if participant.status != ParticipantStatus.PENDING:
            raise InvalidState(f"Cannot start assessment from status '{participant.status.value}'")

        participant.status = ParticipantStatus.IN_PROGRESS
        participant.assessment_started_at = datetime.now(UTC)
        await self._session.flush()

        logger.info("Participant %s started assessment", participant_id)
        return participant

    async def submit_answer(
        self,
        participant_id: uuid.UUID,
        question_number: int,
        text: str,
        is_sensitive: bool | None = None,
        question_text: str | None = None,
    ) -> SubmissionResult:
        """Store one answer and its flags and signal.

        ``is_sensitive=None`` means decide from the question configuration
        and the answer content. Flags never block the submission.
        """
        participant = await self.get(participant_id)
        if participant.status != ParticipantStatus.IN_PROGRESS:
            raise InvalidState(f"Cannot submit answers in status '{participant.status.value}'")
        question = self._questionnaire.question(question_number)
        if not text or not text.strip():
            raise ValidationFailed("Answer text must not be empty")

        drafts = derive_flags(question_number, text, self._flag_strategy)
        flag_types = [draft.flag_type for draft in drafts]
        signal = extract_signal(question_number, text, flag_types)

        if is_sensitive is None:
            is_sensitive = question.sensitive or is_sensitive_content(text, flag_types)
        stored = self._cipher.encrypt(text) if is_sensitive else text

        answer = await self._upsert_answer(
            participant_id,
            question_number,
            question_text or question.text,
            stored,
            is_sensitive,
        )
        await self._upsert_signal(participant_id, signal)
        flags = await self._replace_unreviewed_flags(participant_id, question_number, drafts)

        if flags:
            participant.needs_human_review = True
        await self._session.flush()

        logger.info(
            "Participant %s answered q%d: encrypted=%s, flags=%d, level=%s",
            participant_id,
            question_number,
            is_sensitive,
            len(flags),
            signal.level.value,
        )
        return SubmissionResult(
            answer=answer,
            signal_level=signal.level,
            flags=flags,
            needs_human_review=participant.needs_human_review,
        )

    async def _find_answer(self, participant_id: uuid.UUID, question_number: int) -> Answer | None:
        result = await self._session.execute(
            select(Answer).where(
                Answer.participant_id == participant_id,
                Answer.question_number == question_number,
            )
        )
        return result.scalar_one_or_none()

    async def _upsert_answer(
        self,
        participant_id: uuid.UUID,
        question_number: int,
        question_text: str,
        stored: str,
        encrypted: bool,
    ) -> Answer:
        values = {
            "question_text": question_text,
            "raw_answer": stored,
            "encrypted": encrypted,
            "answered_at": datetime.now(UTC),
        }
        answer = await self._find_answer(participant_id, question_number)
        if answer is None:
            answer = await self._insert_or_reload(
                Answer(participant_id=participant_id, question_number=question_number, **values),
                lambda: self._find_answer(participant_id, question_number),
            )
        # Last write wins.
        for key, value in values.items():
            setattr(answer, key, value)
        return answer

    async def _find_signal(self, participant_id: uuid.UUID, question_number: int) -> AnswerSignal | None:
        result = await self._session.execute(
            select(AnswerSignal).where(
                AnswerSignal.participant_id == participant_id,
                AnswerSignal.question_number == question_number,
            )
        )
        return result.scalar_one_or_none()

    async def _upsert_signal(self, participant_id: uuid.UUID, signal: SignalData) -> AnswerSignal:
        values = {
            "signal_level": signal.level,
            "is_garbage": signal.is_garbage,
            "is_gaming": signal.is_gaming,
            "is_phobic": signal.is_phobic,
            "is_defensive": signal.is_defensive,
            "created_at": datetime.now(UTC),
        }
        row = await self._find_signal(participant_id, signal.question_number)
        if row is None:
            row = await self._insert_or_reload(
                AnswerSignal(participant_id=participant_id, question_number=signal.question_number, **values),
                lambda: self._find_signal(participant_id, signal.question_number),
            )
        for key, value in values.items():
            setattr(row, key, value)
        return row

    async def _replace_unreviewed_flags(
        self, participant_id: uuid.UUID, question_number: int, drafts: list[FlagDraft]
    ) -> list[Flag]:
        # Reviewed flags are part of the audit trail and survive resubmission.
        await self._session.execute(
            delete(Flag).where(
                Flag.participant_id == participant_id,
                Flag.question_number == question_number,
                Flag.reviewed_at.is_(None),
            )
        )
        flags = [
            Flag(
                participant_id=participant_id,
                question_number=draft.question_number,
                flag_type=draft.flag_type,
                flag_reason=draft.flag_reason,
                severity=draft.severity,
                created_at=datetime.now(UTC),
            )
            for draft in drafts
        ]
        self._session.add_all(flags)
        return flags

    async def complete(self, participant_id: uuid.UUID) -> RadarProfile:
        """Aggregate the stored signals into the radar and mark completed.

        Calling it again on a completed participant recomputes the same
        profile.
        """
        participant = await self.get(participant_id)
        if participant.status not in (ParticipantStatus.IN_PROGRESS, ParticipantStatus.COMPLETED):
            raise InvalidState(f"Cannot complete assessment from status '{participant.status.value}'")
        await self._ledger.require_consent(participant_id, ConsentType.ASSESSMENT)

        result = await self._session.execute(select(AnswerSignal).where(AnswerSignal.participant_id == participant_id))
        rows = {row.question_number: row for row in result.scalars().all()}
        missing = [n for n in self._questionnaire.required_numbers if n not in rows]
        if missing:
            raise IncompleteAssessment(missing)

        signals = [
            SignalData(
                question_number=n,
                level=rows[n].signal_level,
                is_garbage=rows[n].is_garbage,
                is_gaming=rows[n].is_gaming,
                is_phobic=rows[n].is_phobic,
                is_defensive=rows[n].is_defensive,
            )
            for n in self._questionnaire.required_numbers
        ]
        scores = aggregate_signals(signals, self._questionnaire)
        profile = await self._upsert_profile(participant_id, scores.as_dict(), scores.scoring_version)

        if participant.status == ParticipantStatus.IN_PROGRESS:
            participant.status = ParticipantStatus.COMPLETED
            participant.assessment_completed_at = datetime.now(UTC)
        await self._session.flush()

        logger.info(
            "Participant %s completed assessment: gate=%s",
            participant_id,
            "basic" if not scores.needs_orientation else "needs_orientation",
        )
        return profile

    async def _find_profile(self, participant_id: uuid.UUID) -> RadarProfile | None:
        result = await self._session.execute(select(RadarProfile).where(RadarProfile.participant_id == participant_id))
        return result.scalar_one_or_none()

    async def _upsert_profile(
        self, participant_id: uuid.UUID, scores: dict[str, float], scoring_version: str
    ) -> RadarProfile:
        default = level_score(SignalLevel.EMERGING)
        values: dict[str, Any] = {dim: scores.get(dim, default) for dim in (*DIMENSIONS, GATE_DIMENSION)}
        values["schema_version"] = RADAR_SCHEMA_VERSION
        values["scoring_version"] = scoring_version

        profile = await self._find_profile(participant_id)
        if profile is None:
            profile = await self._insert_or_reload(
                RadarProfile(participant_id=participant_id, created_at=datetime.now(UTC), **values),
                lambda: self._find_profile(participant_id),
            )
        # A concurrent completion computed the same scores from the same signals.
        for key, value in values.items():
            setattr(profile, key, value)
        return profile

    async def request_deletion(
        self,
        participant_id: uuid.UUID,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Participant:
        """Soft-delete: hide the participant now and schedule physical erasure."""
        participant = await self.get(participant_id, include_deleted=True)
        if participant.status == ParticipantStatus.DELETED:
            raise InvalidState("Participant is already deleted")

        now = datetime.now(UTC)
        participant.status = ParticipantStatus.DELETED
        participant.manually_deleted_at = now
        participant.erasure_scheduled_at = now + timedelta(days=self._settings.erasure_grace_days)

        await self._ledger.record_consent(
            participant_id,
            ConsentType.DATA_PROCESSING,
            False,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        await self._session.flush()

        logger.info(
            "Participant %s requested deletion; erasure scheduled in %d day(s)",
            participant_id,
            self._settings.erasure_grace_days,
        )
        return participant

    # ------------------------------------------------------------------
    # Radar reads
    # ------------------------------------------------------------------

    async def get_radar(self, participant_id: uuid.UUID) -> RadarProfile | None:
        await self.get(participant_id)
        return await self._find_profile(participant_id)

    async def public_radar(self, participant_id: uuid.UUID) -> dict[str, str]:
        """Radar levels for public display. Requires ``public_radar`` consent."""
        profile = await self.get_radar(participant_id)
        if profile is None:
            raise InvalidState("Assessment has not been completed")
        await self._ledger.require_consent(participant_id, ConsentType.PUBLIC_RADAR)
        levels = {dim: score_to_level(getattr(profile, dim)).value for dim in DIMENSIONS}
        levels[GATE_DIMENSION] = "basic" if profile.gate_experience > 0 else "needs_orientation"
        return levels

    # ------------------------------------------------------------------
    # Organizer review
    # ------------------------------------------------------------------

    async def list_flags(self, participant_id: uuid.UUID) -> list[Flag]:
        """All flags for a participant, by question number then creation time."""
        await self.get(participant_id)
        result = await self._session.execute(
            select(Flag)
            .where(Flag.participant_id == participant_id)
            .order_by(Flag.question_number.asc(), Flag.created_at.asc())
        )
        return list(result.scalars().all())

    async def review_flag(self, flag_id: uuid.UUID, reviewer: uuid.UUID | None = None) -> Flag:
        flag = await self._session.get(Flag, flag_id)
        if flag is None:
            raise NotFound(f"Flag {flag_id} not found")
        if flag.reviewed_at is not None:
            raise InvalidState("Flag has already been reviewed")

        flag.reviewed_at = datetime.now(UTC)
        flag.reviewed_by = reviewer
        await self._session.flush()

        logger.info("Flag %s reviewed by %s", flag_id, reviewer)
        return flag

    async def overview(self) -> dict[str, Any]:
        """Counts by status plus participants with unreviewed flags."""
        counts_result = await self._session.execute(
            select(Participant.status, func.count(Participant.id)).group_by(Participant.status)
        )
        counts = {status.value: 0 for status in ParticipantStatus}
        for status, count in counts_result.all():
            counts[ParticipantStatus(status).value] = count

        gate_result = await self._session.execute(
            select(RadarProfile.gate_experience, func.count(RadarProfile.id))
            .join(Participant, Participant.id == RadarProfile.participant_id)
            .where(Participant.status != ParticipantStatus.DELETED)
            .group_by(RadarProfile.gate_experience)
        )
        gates = {"basic": 0, "needs_orientation": 0}
        for gate, count in gate_result.all():
            gates["basic" if gate > 0 else "needs_orientation"] += count

        flagged_result = await self._session.execute(
            select(Participant.id, Participant.email, Participant.status, func.count(Flag.id))
            .join(Flag, Flag.participant_id == Participant.id)
            .where(Flag.reviewed_at.is_(None), Participant.status != ParticipantStatus.DELETED)
            .group_by(Participant.id, Participant.email, Participant.status)
            .order_by(Participant.email.asc())
        )
        flagged = [
            {
                "participant_id": str(pid),
                "email": email,
                "status": ParticipantStatus(status).value,
                "unreviewed_flags": count,
            }
            for pid, email, status, count in flagged_result.all()
        ]

        return {"counts": counts, "gate_experience": gates, "flagged_participants": flagged}
