"""Consent ledger routes.

Provides:
- POST /api/v1/bmnl/consent               (append a grant or revocation)
- GET  /api/v1/bmnl/consent/{subject_id}  (current consent per type)

A subject is either a participant owned by the caller or the caller's
own account. Every call appends; nothing is updated in place.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import authorize_subject, client_metadata, get_participant_service, get_session
from src.bmnl.lifecycle import ParticipantService
from src.core.auth import get_current_user
from src.core.models import User
from src.security.consent.models import ConsentRecord, ConsentType
from src.security.consent.service import ConsentLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/bmnl/consent", tags=["consent"])


class RecordConsentPayload(BaseModel):
    """Request body for recording a consent event."""

    subject_id: UUID
    consent_type: ConsentType
    granted: bool
    consent_text: str | None = Field(default=None, max_length=4000)


def _record_out(record: ConsentRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "subject_id": str(record.subject_id),
        "consent_type": record.consent_type.value,
        "granted": record.granted,
        "granted_at": record.granted_at.isoformat() if record.granted_at else None,
        "revoked_at": record.revoked_at.isoformat() if record.revoked_at else None,
        "version": record.version,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def record_consent(
    payload: RecordConsentPayload,
    request: Request,
    session: AsyncSession = Depends(get_session),
    service: ParticipantService = Depends(get_participant_service),
    user: User = Depends(get_current_user),
) -> dict[str, Any]:
    """Append a consent grant or revocation for a subject."""
    await authorize_subject(payload.subject_id, user, service)
    ip_address, user_agent = client_metadata(request)
    record = await ConsentLedger(session).record_consent(
        payload.subject_id,
        payload.consent_type,
        payload.granted,
        consent_text=payload.consent_text,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    await session.commit()
    return _record_out(record)


@router.get("/{subject_id}")
async def get_consent_status(
    subject_id: UUID,
    session: AsyncSession = Depends(get_session),
    service: ParticipantService = Depends(get_participant_service),
    user: User = Depends(get_current_user),
) -> dict[str, Any]:
    """Whether each consent type is currently active for the subject."""
    await authorize_subject(subject_id, user, service)
    latest = await ConsentLedger(session).current_status(subject_id)
    return {
        "subject_id": str(subject_id),
        "consents": {
            consent_type.value: {
                "active": consent_type in latest and latest[consent_type].granted,
                "updated_at": (
                    latest[consent_type].created_at.isoformat() if consent_type in latest else None
                ),
            }
            for consent_type in ConsentType
        },
    }
