"""Usage analytics routes.

Provides:
- POST /api/v1/bmnl/analytics/events  (requires active analytics consent)
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import authorize_subject, get_participant_service, get_session
from src.bmnl.analytics import AnalyticsTracker
from src.bmnl.lifecycle import ParticipantService
from src.core.auth import get_current_user
from src.core.models import AnalyticsEventType, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/bmnl/analytics", tags=["analytics"])


class TrackEventPayload(BaseModel):
    subject_id: UUID
    event_type: AnalyticsEventType
    event_data: dict[str, Any] = Field(default_factory=dict)


@router.post("/events", status_code=status.HTTP_201_CREATED)
async def track_event(
    payload: TrackEventPayload,
    session: AsyncSession = Depends(get_session),
    service: ParticipantService = Depends(get_participant_service),
    user: User = Depends(get_current_user),
) -> dict[str, Any]:
    """Record a usage event for a subject who consented to analytics."""
    await authorize_subject(payload.subject_id, user, service)
    event = await AnalyticsTracker(session).track(payload.subject_id, payload.event_type, payload.event_data)
    await session.commit()
    return {
        "id": str(event.id),
        "subject_id": str(event.subject_id),
        "event_type": event.event_type.value,
        "created_at": event.created_at.isoformat(),
    }
