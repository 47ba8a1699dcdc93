"""Data subject rights: full export and irreversible erasure.

Export is one consistent read of everything a participant owns, with
sensitive answers decrypted for the human-readable bundle. A decryption
failure aborts the export rather than leaking ciphertext.

Erasure deletes dependents first and the participant root last. Each
step runs in its own savepoint; a failing step is logged and recorded in
the report, and the remaining steps still run.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.bmnl.analytics import AnalyticsTracker
from src.bmnl.questionnaire import Questionnaire
from src.bmnl.radar import scores_from_profile
from src.bmnl.summary import generate_summary_reasons
from src.core.encryption import AnswerCipher
from src.core.errors import NotFound
from src.core.models.bmnl import (
    AnalyticsEvent,
    Answer,
    AnswerSignal,
    Flag,
    Participant,
    ParticipantStatus,
    RadarProfile,
)
from src.security.consent.models import ConsentRecord
from src.security.consent.service import ConsentLedger

logger = logging.getLogger(__name__)

ErasureStep = Callable[[AsyncSession, uuid.UUID], Awaitable[int]]


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _delete_where(model: type, column_name: str) -> ErasureStep:
    async def step(session: AsyncSession, participant_id: uuid.UUID) -> int:
        column = getattr(model, column_name)
        result = await session.execute(delete(model).where(column == participant_id))
        return result.rowcount or 0

    return step


# Dependents before the root.
ERASURE_STEPS: list[tuple[str, ErasureStep]] = [
    ("flags", _delete_where(Flag, "participant_id")),
    ("signals", _delete_where(AnswerSignal, "participant_id")),
    ("radar_profile", _delete_where(RadarProfile, "participant_id")),
    ("consent_records", _delete_where(ConsentRecord, "subject_id")),
    ("analytics_events", _delete_where(AnalyticsEvent, "subject_id")),
    ("answers", _delete_where(Answer, "participant_id")),
    ("participant", _delete_where(Participant, "id")),
]


@dataclass
class ExportBundle:
    """Everything held about one participant, ready to serialise."""

    participant: dict[str, Any]
    radar: dict[str, Any] | None
    answers: list[dict[str, Any]]
    flags: list[dict[str, Any]]
    consent_history: list[dict[str, Any]]
    analytics_events: list[dict[str, Any]]
    summary_reasons: list[dict[str, Any]]
    flags_for_participant: dict[str, Any]
    exported_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "participant": self.participant,
            "radar": self.radar,
            "answers": self.answers,
            "flags": self.flags,
            "consent_history": self.consent_history,
            "analytics_events": self.analytics_events,
            "summary_reasons": self.summary_reasons,
            "flags_for_participant": self.flags_for_participant,
            "exported_at": self.exported_at.isoformat(),
        }


@dataclass
class ErasureReport:
    """Per-step outcome of an erasure run."""

    participant_id: uuid.UUID
    deleted: dict[str, int] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failed

    @property
    def message(self) -> str:
        if self.complete:
            return "All participant data has been permanently erased."
        return "Erasure finished with failures in: " + ", ".join(self.failed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "participant_id": str(self.participant_id),
            "deleted": dict(self.deleted),
            "failed": dict(self.failed),
            "complete": self.complete,
            "message": self.message,
        }


class DataRightsGateway:
    """Export and erasure over a participant's whole footprint."""

    def __init__(
        self,
        session: AsyncSession,
        cipher: AnswerCipher,
        questionnaire: Questionnaire,
        steps: Sequence[tuple[str, ErasureStep]] | None = None,
    ) -> None:
        self._session = session
        self._cipher = cipher
        self._questionnaire = questionnaire
        self._steps = list(steps) if steps is not None else ERASURE_STEPS

    async def export_all(self, participant_id: uuid.UUID) -> ExportBundle:
        """Collect the participant's data with answers decrypted.

        Raises:
            NotFound: unknown or deleted participant.
            DecryptionFailed: a stored answer fails its integrity check.
        """
        participant = await self._session.get(Participant, participant_id)
        if participant is None or participant.status == ParticipantStatus.DELETED:
            raise NotFound(f"Participant {participant_id} not found")

        result = await self._session.execute(
            select(Answer).where(Answer.participant_id == participant_id).order_by(Answer.question_number)
        )
        answer_rows = result.scalars().all()
        plaintexts: dict[int, str] = {}
        answers: list[dict[str, Any]] = []
        for row in answer_rows:
            text = self._cipher.decrypt(row.raw_answer) if row.encrypted else row.raw_answer
            plaintexts[row.question_number] = text
            answers.append(
                {
                    "question_number": row.question_number,
                    "question_text": row.question_text,
                    "answer": text,
                    "encrypted_at_rest": row.encrypted,
                    "answered_at": _iso(row.answered_at),
                }
            )

        result = await self._session.execute(
            select(RadarProfile).where(RadarProfile.participant_id == participant_id)
        )
        radar_row = result.scalar_one_or_none()
        radar: dict[str, Any] | None = None
        summary_reasons: list[dict[str, Any]] = []
        if radar_row is not None:
            scores = scores_from_profile(radar_row, self._questionnaire.dimensions)
            radar = {
                **scores.as_dict(),
                "levels": {dim: level.value for dim, level in scores.levels().items()},
                "scoring_version": radar_row.scoring_version,
                "created_at": _iso(radar_row.created_at),
            }
            summary_reasons = [r.to_dict() for r in generate_summary_reasons(plaintexts, scores)]

        result = await self._session.execute(
            select(Flag).where(Flag.participant_id == participant_id).order_by(Flag.question_number, Flag.created_at)
        )
        flag_rows = result.scalars().all()
        flags = [
            {
                "question_number": f.question_number,
                "flag_type": f.flag_type.value,
                "flag_reason": f.flag_reason,
                "severity": f.severity.value,
                "created_at": _iso(f.created_at),
                "reviewed_at": _iso(f.reviewed_at),
            }
            for f in flag_rows
        ]

        consent_history = [
            {
                "consent_type": c.consent_type.value,
                "granted": c.granted,
                "granted_at": _iso(c.granted_at),
                "revoked_at": _iso(c.revoked_at),
                "consent_text": c.consent_text,
                "version": c.version,
                "created_at": _iso(c.created_at),
            }
            for c in await ConsentLedger(self._session).history(participant_id)
        ]

        analytics_events = [
            {
                "event_type": e.event_type.value,
                "event_data": e.event_data,
                "created_at": _iso(e.created_at),
            }
            for e in await AnalyticsTracker(self._session).events_for(participant_id)
        ]

        logger.info("Exported data for participant %s", participant_id)
        return ExportBundle(
            participant={
                "id": str(participant.id),
                "email": participant.email,
                "status": participant.status.value,
                "created_at": _iso(participant.created_at),
                "consent_granted_at": _iso(participant.consent_granted_at),
                "assessment_started_at": _iso(participant.assessment_started_at),
                "assessment_completed_at": _iso(participant.assessment_completed_at),
                "auto_delete_at": _iso(participant.auto_delete_at),
            },
            radar=radar,
            answers=answers,
            flags=flags,
            consent_history=consent_history,
            analytics_events=analytics_events,
            summary_reasons=summary_reasons,
            flags_for_participant={
                "needs_human_review": participant.needs_human_review,
                "reason": participant.review_notes,
            },
            exported_at=datetime.now(UTC),
        )

    async def erase_all(self, participant_id: uuid.UUID) -> ErasureReport:
        """Delete every row the participant owns, root last.

        Raises:
            NotFound: no participant row exists for the id.
        """
        participant = await self._session.get(Participant, participant_id)
        if participant is None:
            raise NotFound(f"Participant {participant_id} not found")

        if participant.status != ParticipantStatus.DELETED:
            participant.status = ParticipantStatus.DELETED
            participant.manually_deleted_at = participant.manually_deleted_at or datetime.now(UTC)
            await self._session.flush()

        report = ErasureReport(participant_id=participant_id)
        for name, step in self._steps:
            try:
                async with self._session.begin_nested():
                    report.deleted[name] = await step(self._session, participant_id)
            except SQLAlchemyError as exc:
                logger.exception("Erasure step %s failed for participant %s", name, participant_id)
                report.failed[name] = type(exc).__name__

        if report.complete:
            logger.info("Erased participant %s: %s", participant_id, report.deleted)
        else:
            logger.error("Partial erasure for participant %s; failed steps: %s", participant_id, list(report.failed))
        return report
