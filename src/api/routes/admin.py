"""Admin API routes for platform management.

Provides:
- POST /api/v1/bmnl/admin/erasure-job        (platform_admin only)
- POST /api/v1/bmnl/admin/rotate-answer-key  (platform_admin only)
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_answer_cipher, get_questionnaire, get_session
from src.bmnl.questionnaire import Questionnaire
from src.core.encryption import AnswerCipher
from src.core.errors import ValidationFailed
from src.core.models import Answer, User, UserRole
from src.core.permissions import require_role
from src.gdpr.erasure_job import find_due_participants, run_erasure_job

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/bmnl/admin", tags=["admin"])


@router.post("/erasure-job")
async def trigger_erasure_job(
    user: User = Depends(require_role(UserRole.PLATFORM_ADMIN)),
    session: AsyncSession = Depends(get_session),
    cipher: AnswerCipher = Depends(get_answer_cipher),
    questionnaire: Questionnaire = Depends(get_questionnaire),
    dry_run: bool = Query(default=True),
    x_confirm_action: str | None = Header(default=None),
) -> dict[str, Any]:
    """Physically erase participants whose erasure is due.

    Use ?dry_run=true (default) to preview which participants would be erased.
    Set ?dry_run=false AND provide header X-Confirm-Action: erasure-job
    to execute.
    """
    if dry_run:
        due = await find_due_participants(session)
        return {
            "dry_run": True,
            "would_erase": len(due),
            "participants": [str(pid) for pid in due],
            "status": "preview",
        }

    if x_confirm_action != "erasure-job":
        raise ValidationFailed("Must provide header X-Confirm-Action: erasure-job to execute erasure")

    count = await run_erasure_job(session, cipher, questionnaire)
    logger.info("Erasure job triggered by %s: %d erased", user.id, count)
    return {"dry_run": False, "erased": count, "status": "completed"}


@router.post("/rotate-answer-key")
async def rotate_answer_key(
    user: User = Depends(require_role(UserRole.PLATFORM_ADMIN)),
    session: AsyncSession = Depends(get_session),
    cipher: AnswerCipher = Depends(get_answer_cipher),
) -> dict[str, Any]:
    """Re-encrypt every encrypted answer with the current key.

    Requires ANSWER_ENCRYPTION_KEY_PREVIOUS to be set to the old key and
    ANSWER_ENCRYPTION_KEY to the new one. A token that neither key opens
    aborts the batch; nothing is persisted in that case.
    """
    result = await session.execute(select(Answer).where(Answer.encrypted.is_(True)))
    answers = result.scalars().all()

    for answer in answers:
        answer.raw_answer = cipher.re_encrypt(answer.raw_answer)

    await session.commit()
    logger.info("Answer key rotation by %s: %d answer(s) re-encrypted", user.id, len(answers))
    return {"rotated": len(answers), "status": "completed"}
