"""Scheduled participant erasure job.

Finds participants whose deletion grace period has passed, or whose
retention window has expired, and physically erases everything they
own. Designed to run periodically (a cron-triggered admin endpoint).
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.bmnl.questionnaire import Questionnaire
from src.bmnl.rights import DataRightsGateway
from src.core.encryption import AnswerCipher
from src.core.models import Participant

logger = logging.getLogger(__name__)


async def find_due_participants(db: AsyncSession, now: datetime | None = None) -> list[uuid.UUID]:
    """Ids of participants whose scheduled erasure or retention expiry has passed."""
    now = now or datetime.now(UTC)
    result = await db.execute(
        select(Participant.id)
        .where(
            or_(
                Participant.erasure_scheduled_at <= now,
                Participant.auto_delete_at <= now,
            )
        )
        .order_by(Participant.created_at)
    )
    return list(result.scalars().all())


async def run_erasure_job(db: AsyncSession, cipher: AnswerCipher, questionnaire: Questionnaire) -> int:
    """Erase every participant whose erasure is due.

    Args:
        db: An active async database session.
        cipher: Answer cipher, passed through to the rights gateway.
        questionnaire: Active questionnaire.

    Returns:
        The number of participants fully erased in this run.
    """
    due = await find_due_participants(db)

    if not due:
        logger.info("Erasure job: no participants due for erasure")
        return 0

    gateway = DataRightsGateway(db, cipher, questionnaire)
    count = 0
    for participant_id in due:
        report = await gateway.erase_all(participant_id)
        if report.complete:
            count += 1

    await db.commit()
    logger.info("Erasure job: erased %d of %d due participant(s)", count, len(due))
    return count
