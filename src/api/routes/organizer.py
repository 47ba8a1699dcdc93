"""Organizer review routes.

Provides:
- GET  /api/v1/bmnl/organizer/overview
- GET  /api/v1/bmnl/organizer/participants/{id}/flags
- POST /api/v1/bmnl/organizer/flags/{flag_id}/review

All endpoints require the ``bmnl:organize`` permission.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_participant_service, get_session
from src.bmnl.lifecycle import ParticipantService
from src.core.models import Flag, User
from src.core.permissions import require_permission

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/bmnl/organizer", tags=["organizer"])


def _flag_out(flag: Flag) -> dict[str, Any]:
    return {
        "id": str(flag.id),
        "participant_id": str(flag.participant_id),
        "question_number": flag.question_number,
        "flag_type": flag.flag_type.value,
        "flag_reason": flag.flag_reason,
        "severity": flag.severity.value,
        "created_at": flag.created_at.isoformat() if flag.created_at else None,
        "reviewed_at": flag.reviewed_at.isoformat() if flag.reviewed_at else None,
    }


@router.get("/overview")
async def overview(
    service: ParticipantService = Depends(get_participant_service),
    _user: User = Depends(require_permission("bmnl:organize")),
) -> dict[str, Any]:
    """Participant counts and everyone with unreviewed flags."""
    return await service.overview()


@router.get("/participants/{participant_id}/flags")
async def list_participant_flags(
    participant_id: UUID,
    service: ParticipantService = Depends(get_participant_service),
    _user: User = Depends(require_permission("bmnl:organize")),
) -> dict[str, Any]:
    """Flags for one participant, by question number then creation time."""
    participant = await service.get(participant_id)
    flags = await service.list_flags(participant_id)
    return {
        "participant_id": str(participant_id),
        "needs_human_review": participant.needs_human_review,
        "flags": [_flag_out(f) for f in flags],
    }


@router.post("/flags/{flag_id}/review")
async def review_flag(
    flag_id: UUID,
    session: AsyncSession = Depends(get_session),
    service: ParticipantService = Depends(get_participant_service),
    user: User = Depends(require_permission("bmnl:organize")),
) -> dict[str, Any]:
    flag = await service.review_flag(flag_id, reviewer=user.id)
    await session.commit()
    return _flag_out(flag)
