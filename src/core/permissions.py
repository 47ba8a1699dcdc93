"""Role-based access control (RBAC) for BMNL Radar.

Defines the permission matrix, FastAPI dependencies for checking user
roles and permissions, and the participant ownership check.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends

from src.core.auth import get_current_user
from src.core.errors import Forbidden
from src.core.models import Participant, User, UserRole

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Permission matrix
# ---------------------------------------------------------------------------

ROLE_PERMISSIONS: dict[str, list[str]] = {
    "platform_admin": ["*"],
    "organizer": [
        "bmnl:participate",
        "bmnl:organize",
    ],
    "member": [
        "bmnl:participate",
    ],
}

# Ordered from most to least privileged for role-level comparisons
ROLE_HIERARCHY: list[UserRole] = [
    UserRole.PLATFORM_ADMIN,
    UserRole.ORGANIZER,
    UserRole.MEMBER,
]


def has_permission(user: User, permission: str) -> bool:
    """Check if a user's role grants a specific permission.

    Args:
        user: The user to check.
        permission: The permission string (e.g. "bmnl:organize").

    Returns:
        True if the role grants the permission.
    """
    role_perms = ROLE_PERMISSIONS.get(user.role.value, [])
    return "*" in role_perms or permission in role_perms


def has_role_level(user: User, minimum_role: UserRole) -> bool:
    """Check if a user has at least the given role level."""
    try:
        user_level = ROLE_HIERARCHY.index(user.role)
        required_level = ROLE_HIERARCHY.index(minimum_role)
    except ValueError:
        return False
    return user_level <= required_level


def ensure_participant_access(user: User, participant: Participant) -> None:
    """Allow the participant's own linked account, or a ``bmnl:admin`` holder.

    Raises:
        Forbidden: Otherwise.
    """
    if participant.auth_user_id is not None and participant.auth_user_id == user.id:
        return
    if has_permission(user, "bmnl:admin"):
        return
    logger.warning("User %s denied access to participant %s", user.id, participant.id)
    raise Forbidden("You do not have access to this participant")


# ---------------------------------------------------------------------------
# FastAPI dependency factories
# ---------------------------------------------------------------------------


def require_permission(permission: str) -> Any:
    """Create a FastAPI dependency that checks a specific permission.

    Usage:
        @router.get("/flags", dependencies=[Depends(require_permission("bmnl:organize"))])
    """

    async def _check(user: User = Depends(get_current_user)) -> User:
        if not has_permission(user, permission):
            raise Forbidden(f"Permission denied: {permission} required")
        return user

    return _check


def require_role(role: UserRole) -> Any:
    """Create a FastAPI dependency that checks minimum role level."""

    async def _check(user: User = Depends(get_current_user)) -> User:
        if not has_role_level(user, role):
            raise Forbidden(f"Insufficient role: {role.value} or higher required")
        return user

    return _check
