"""User lookups shared by the workflows."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from steprewards.db.models import Admin, User
from steprewards.errors import NotFound


async def get_user(db: AsyncSession, user_id: str) -> User | None:
    """Load a user with fresh column values.

    Balance columns are changed by bulk UPDATEs, so identity-map copies may be
    stale; always repopulate from the row.
    """
    result = await db.execute(
        select(User)
        .where(User.id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def require_user(db: AsyncSession, user_id: str) -> User:
    """Load a user or raise NotFound."""
    user = await get_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def is_admin(db: AsyncSession, user_id: str) -> bool:
    """Check the admin allow-list."""
    return await db.get(Admin, user_id) is not None
