"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from steprewards.auth.jwt import verify_token
from steprewards.database import get_session
from steprewards.errors import PermissionDenied, Unauthenticated
from steprewards.users.service import is_admin

_bearer = HTTPBearer(auto_error=False)


async def get_current_uid(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> str:
    """Verify the bearer token and return the caller's uid."""
    if credentials is None:
        raise Unauthenticated("User must be authenticated")
    try:
        payload = verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise Unauthenticated(str(e)) from e
    return str(payload["sub"])


async def require_admin(
    uid: str = Depends(get_current_uid),
    db: AsyncSession = Depends(get_session),
) -> str:
    """Same as get_current_uid but the caller must be on the admin allow-list."""
    if not await is_admin(db, uid):
        raise PermissionDenied("Only admins can perform this action")
    return uid
