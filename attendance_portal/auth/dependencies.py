"""Auth dependencies — bearer JWT validation, RBAC enforcement.

Tokens are issued by the external identity provider. Claims used:
``sub`` (staff profile id), ``role`` and optionally ``department_id``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from attendance_portal.common.constants import UserRole
from attendance_portal.common.exceptions import ForbiddenException
from attendance_portal.config import settings
from attendance_portal.core_hr.models import StaffProfile
from attendance_portal.database import get_db

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    """The authenticated caller: profile row plus the role the token grants."""

    profile: StaffProfile
    role: UserRole
    department_id: Optional[uuid.UUID]

    @property
    def id(self) -> uuid.UUID:
        return self.profile.id


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


def _parse_uuid(value: object, claim: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Invalid '{claim}' claim.")


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Validate the JWT and return the caller with profile, location and department loaded."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    if "sub" not in payload:
        raise HTTPException(status_code=401, detail="Token has no subject.")
    user_id = _parse_uuid(payload["sub"], "sub")

    result = await db.execute(
        select(StaffProfile)
        .where(StaffProfile.id == user_id, StaffProfile.is_active.is_(True))
        .options(
            selectinload(StaffProfile.department),
            selectinload(StaffProfile.assigned_location),
        ),
    )
    profile = result.scalars().first()
    if profile is None:
        raise HTTPException(status_code=401, detail="User account is inactive or not found.")

    role_str = payload.get("role", profile.role.value)
    try:
        role = UserRole(role_str)
    except ValueError:
        logger.warning("Token for %s carries unknown role %r; treating as staff", user_id, role_str)
        role = UserRole.staff

    department_claim = payload.get("department_id")
    department_id = (
        _parse_uuid(department_claim, "department_id")
        if department_claim
        else profile.department_id
    )

    request.state.user_role = role
    return CurrentUser(profile=profile, role=role, department_id=department_id)


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: UserRole) -> Callable:
    """Return a FastAPI dependency that enforces role membership."""

    async def _check(
        user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        if user.role not in allowed_roles:
            raise ForbiddenException(
                detail=f"Role '{user.role.value}' is not permitted. Required: {[r.value for r in allowed_roles]}.",
            )
        return user

    return _check
