"""Tournament API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from steprewards.auth.dependencies import get_current_uid, require_admin
from steprewards.dependencies import get_db
from steprewards.tournaments.schemas import (
    CreateTournamentRequest,
    CreateTournamentResponse,
    JoinTournamentResponse,
)
from steprewards.tournaments.service import create_tournament, join_tournament

router = APIRouter(prefix="/api/v1/tournaments", tags=["Tournaments"])


@router.post("", response_model=CreateTournamentResponse)
async def create(
    body: CreateTournamentRequest,
    _admin: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> CreateTournamentResponse:
    """Create a tournament (admin only)."""
    tournament = await create_tournament(
        db,
        name=body.name,
        start_date=body.start_date,
        end_date=body.end_date,
        prize_pool=body.prize_pool,
        description=body.description,
        prizes=body.prizes,
        is_active=body.is_active,
        is_premium_only=body.is_premium_only,
    )
    return CreateTournamentResponse(success=True, tournament_id=tournament.id)


@router.post("/{tournament_id}/join", response_model=JoinTournamentResponse)
async def join(
    tournament_id: int,
    uid: str = Depends(get_current_uid),
    db: AsyncSession = Depends(get_db),
) -> JoinTournamentResponse:
    """Join a running tournament."""
    message = await join_tournament(db, uid, tournament_id)
    return JoinTournamentResponse(success=True, message=message)
