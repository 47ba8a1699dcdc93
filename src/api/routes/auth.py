"""Authentication API routes.

Provides:
- POST /api/v1/auth/token    (dev mode: email+password login, returns a bearer token)
- GET  /api/v1/auth/me       (current user info)

In production, tokens come from the external identity provider and only
the bearer validation in ``src.core.auth`` is used.
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, EmailStr, Field
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_session
from src.core.auth import create_access_token, get_current_user, verify_password
from src.core.config import Settings, get_settings
from src.core.errors import Forbidden, Unauthorized
from src.core.models import User, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])
limiter = Limiter(key_func=get_remote_address, default_limits=["100/minute"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class TokenRequest(BaseModel):
    """Login request (dev mode only)."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    """User info response."""

    model_config = {"from_attributes": True}

    id: UUID
    email: str
    name: str
    role: UserRole
    is_active: bool


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/token", response_model=TokenResponse)
@limiter.limit("5/minute")
async def get_token(
    request: Request,
    payload: TokenRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Get an access token via email + password (dev mode only)."""
    if not settings.auth_dev_mode:
        raise Forbidden("Dev-mode token endpoint is disabled")

    result = await session.execute(select(User).where(User.email == payload.email.lower()))
    user = result.scalar_one_or_none()

    if user is None or user.hashed_password is None:
        raise Unauthorized("Invalid email or password")
    if not verify_password(payload.password, user.hashed_password):
        raise Unauthorized("Invalid email or password")
    if not user.is_active:
        raise Unauthorized("User account is disabled")

    claims = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role.value,
    }
    logger.info("Issued dev-mode token for user %s", user.id)
    return {"access_token": create_access_token(claims, settings), "token_type": "bearer"}


@router.get("/me", response_model=UserResponse)
async def get_me(user: User = Depends(get_current_user)) -> User:
    """Return the authenticated user."""
    return user
