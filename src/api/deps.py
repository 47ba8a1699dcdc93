"""Shared FastAPI dependencies.

Provides the request-scoped database session, the process-wide answer
cipher and questionnaire stored on ``app.state`` at startup, and the
domain services built from them.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.bmnl.lifecycle import ParticipantService
from src.bmnl.questionnaire import Questionnaire
from src.bmnl.rights import DataRightsGateway
from src.core.config import Settings, get_settings
from src.core.encryption import AnswerCipher
from src.core.models import User
from src.core.permissions import ensure_participant_access


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session from app state via FastAPI dependency injection.

    The session is scoped to the request. Routes commit explicitly;
    anything left uncommitted is rolled back when the session closes.
    """
    session_factory = request.app.state.db_session_factory
    async with session_factory() as session:
        yield session


def get_answer_cipher(request: Request) -> AnswerCipher:
    return request.app.state.answer_cipher


def get_questionnaire(request: Request) -> Questionnaire:
    return request.app.state.questionnaire


def get_participant_service(
    session: AsyncSession = Depends(get_session),
    cipher: AnswerCipher = Depends(get_answer_cipher),
    questionnaire: Questionnaire = Depends(get_questionnaire),
    settings: Settings = Depends(get_settings),
) -> ParticipantService:
    """Lifecycle service bound to the request's session."""
    return ParticipantService(session, cipher, questionnaire, settings=settings)


def get_rights_gateway(
    session: AsyncSession = Depends(get_session),
    cipher: AnswerCipher = Depends(get_answer_cipher),
    questionnaire: Questionnaire = Depends(get_questionnaire),
) -> DataRightsGateway:
    return DataRightsGateway(session, cipher, questionnaire)


def client_metadata(request: Request) -> tuple[str | None, str | None]:
    """Client IP and user agent recorded alongside consent events."""
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


async def authorize_subject(subject_id: UUID, user: User, service: ParticipantService) -> None:
    """A subject is the caller's own account or a live participant the caller may access."""
    if subject_id == user.id:
        return
    participant = await service.get(subject_id)
    ensure_participant_access(user, participant)
