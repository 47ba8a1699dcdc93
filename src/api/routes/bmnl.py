"""Participant assessment routes.

Provides the participant-facing lifecycle:
- POST   /api/v1/bmnl/participants                        (create, idempotent)
- POST   /api/v1/bmnl/participants/{id}/start
- POST   /api/v1/bmnl/participants/{id}/answers
- POST   /api/v1/bmnl/participants/{id}/complete
- GET    /api/v1/bmnl/participants/{id}/radar
- GET    /api/v1/bmnl/participants/{id}/radar/public      (public_radar consent)
- GET    /api/v1/bmnl/participants/{id}/export            (data access right)
- POST   /api/v1/bmnl/participants/{id}/deletion-request  (scheduled erasure)
- DELETE /api/v1/bmnl/participants/{id}                   (immediate erasure)
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import client_metadata, get_participant_service, get_rights_gateway, get_session
from src.api.routes.auth import limiter
from src.bmnl.lifecycle import ParticipantService, normalize_email
from src.bmnl.rights import DataRightsGateway
from src.core.auth import get_current_user
from src.core.errors import ConsentRequired, Forbidden, NotFound
from src.core.models import Participant, ParticipantStatus, RadarProfile, User
from src.core.permissions import ensure_participant_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/bmnl/participants", tags=["bmnl"])

MAX_ANSWER_LENGTH = 10_000


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class CreateParticipantPayload(BaseModel):
    """Start the onboarding flow. ``email`` defaults to the account email."""

    email: EmailStr | None = None
    consent_granted: bool
    consent_text: str | None = Field(default=None, max_length=4000)


class SubmitAnswerPayload(BaseModel):
    question_number: int = Field(..., ge=1)
    answer: str = Field(..., min_length=1, max_length=MAX_ANSWER_LENGTH)
    is_sensitive: bool | None = None
    question_text: str | None = Field(default=None, max_length=2000)


def _participant_out(participant: Participant) -> dict[str, Any]:
    return {
        "id": str(participant.id),
        "email": participant.email,
        "status": participant.status.value,
        "consent_granted_at": participant.consent_granted_at.isoformat() if participant.consent_granted_at else None,
        "assessment_started_at": (
            participant.assessment_started_at.isoformat() if participant.assessment_started_at else None
        ),
        "assessment_completed_at": (
            participant.assessment_completed_at.isoformat() if participant.assessment_completed_at else None
        ),
    }


def _radar_out(profile: RadarProfile) -> dict[str, Any]:
    return {
        "participation": profile.participation,
        "consent_literacy": profile.consent_literacy,
        "communal_responsibility": profile.communal_responsibility,
        "inclusion_awareness": profile.inclusion_awareness,
        "self_regulation": profile.self_regulation,
        "openness_to_learning": profile.openness_to_learning,
        "gate_experience": profile.gate_experience,
        "scoring_version": profile.scoring_version,
    }


async def _owned(
    service: ParticipantService, participant_id: UUID, user: User, include_deleted: bool = False
) -> Participant:
    participant = await service.get(participant_id, include_deleted=include_deleted)
    ensure_participant_access(user, participant)
    return participant


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_participant(
    request: Request,
    payload: CreateParticipantPayload,
    session: AsyncSession = Depends(get_session),
    service: ParticipantService = Depends(get_participant_service),
    user: User = Depends(get_current_user),
) -> dict[str, Any]:
    """Create (or return) the caller's participant and record assessment consent."""
    if not payload.consent_granted:
        raise ConsentRequired("Consent must be granted to start the assessment")
    if payload.email is not None and normalize_email(payload.email) != user.email.strip().lower():
        raise Forbidden("Participants can only be created for your own account email")

    ip_address, user_agent = client_metadata(request)
    participant = await service.create(
        email=payload.email or user.email,
        auth_user_id=user.id,
        consent_text=payload.consent_text,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    await session.commit()
    return _participant_out(participant)


@router.post("/{participant_id}/start")
async def start_assessment(
    participant_id: UUID,
    session: AsyncSession = Depends(get_session),
    service: ParticipantService = Depends(get_participant_service),
    user: User = Depends(get_current_user),
) -> dict[str, Any]:
    await _owned(service, participant_id, user)
    participant = await service.start_assessment(participant_id)
    await session.commit()
    return _participant_out(participant)


@router.post("/{participant_id}/answers")
async def submit_answer(
    participant_id: UUID,
    payload: SubmitAnswerPayload,
    session: AsyncSession = Depends(get_session),
    service: ParticipantService = Depends(get_participant_service),
    user: User = Depends(get_current_user),
) -> dict[str, Any]:
    """Store one answer. Review flags are recorded but never block the submission."""
    await _owned(service, participant_id, user)
    result = await service.submit_answer(
        participant_id,
        payload.question_number,
        payload.answer,
        is_sensitive=payload.is_sensitive,
        question_text=payload.question_text,
    )
    await session.commit()
    return {
        "success": True,
        "question_number": payload.question_number,
        "encrypted": result.encrypted,
    }


@router.post("/{participant_id}/complete")
async def complete_assessment(
    participant_id: UUID,
    session: AsyncSession = Depends(get_session),
    service: ParticipantService = Depends(get_participant_service),
    user: User = Depends(get_current_user),
) -> dict[str, Any]:
    await _owned(service, participant_id, user)
    profile = await service.complete(participant_id)
    participant = await service.get(participant_id)
    await session.commit()
    return {"participant": _participant_out(participant), "radar": _radar_out(profile)}


@router.get("/{participant_id}/radar")
async def get_radar(
    participant_id: UUID,
    service: ParticipantService = Depends(get_participant_service),
    user: User = Depends(get_current_user),
) -> dict[str, Any]:
    await _owned(service, participant_id, user)
    profile = await service.get_radar(participant_id)
    if profile is None:
        raise NotFound("No radar profile yet; complete the assessment first")
    return _radar_out(profile)


@router.get("/{participant_id}/radar/public")
async def get_public_radar(
    participant_id: UUID,
    service: ParticipantService = Depends(get_participant_service),
    _user: User = Depends(get_current_user),
) -> dict[str, Any]:
    """Radar levels for display to other members; requires public_radar consent."""
    return {"participant_id": str(participant_id), "levels": await service.public_radar(participant_id)}


@router.get("/{participant_id}/export")
async def export_participant(
    participant_id: UUID,
    service: ParticipantService = Depends(get_participant_service),
    gateway: DataRightsGateway = Depends(get_rights_gateway),
    user: User = Depends(get_current_user),
) -> dict[str, Any]:
    """Export everything held about the participant, answers decrypted."""
    await _owned(service, participant_id, user)
    bundle = await gateway.export_all(participant_id)
    return bundle.to_dict()


@router.post("/{participant_id}/deletion-request", status_code=status.HTTP_202_ACCEPTED)
async def request_deletion(
    participant_id: UUID,
    request: Request,
    session: AsyncSession = Depends(get_session),
    service: ParticipantService = Depends(get_participant_service),
    user: User = Depends(get_current_user),
) -> dict[str, Any]:
    """Hide the participant now; physical erasure follows within the grace window."""
    await _owned(service, participant_id, user)
    ip_address, user_agent = client_metadata(request)
    participant = await service.request_deletion(participant_id, ip_address=ip_address, user_agent=user_agent)
    await session.commit()
    return {
        "success": True,
        "message": "Your data has been scheduled for permanent erasure.",
        "erasure_scheduled_at": participant.erasure_scheduled_at.isoformat() if participant.erasure_scheduled_at else None,
    }


@router.delete("/{participant_id}")
async def delete_participant(
    participant_id: UUID,
    request: Request,
    session: AsyncSession = Depends(get_session),
    service: ParticipantService = Depends(get_participant_service),
    gateway: DataRightsGateway = Depends(get_rights_gateway),
    user: User = Depends(get_current_user),
) -> dict[str, Any]:
    """Erase the participant immediately, also during a scheduled erasure's grace window."""
    participant = await _owned(service, participant_id, user, include_deleted=True)
    if participant.status != ParticipantStatus.DELETED:
        ip_address, user_agent = client_metadata(request)
        await service.request_deletion(participant_id, ip_address=ip_address, user_agent=user_agent)
    report = await gateway.erase_all(participant_id)
    await session.commit()
    return {"success": report.complete, **report.to_dict()}
