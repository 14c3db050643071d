"""Leaderboard endpoint."""

from typing import Any

from fastapi import APIRouter, Depends, Query

from src.core.config import Constants
from src.domain.user import Identity
from src.domain.xp import LeaderboardPeriod
from src.interface.deps import get_current_user, ok
from src.services import leaderboard_service


router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


@router.get("")
async def get_leaderboard(
    period: LeaderboardPeriod = LeaderboardPeriod.WEEKLY,
    limit: int = Query(default=Constants.LEADERBOARD_DEFAULT_LIMIT, ge=1, le=Constants.DEFAULT_PER_PAGE_LIMIT),
    user: Identity = Depends(get_current_user),
) -> dict[str, Any]:
    leaderboard = await leaderboard_service.get_leaderboard(period=period, limit=limit, current_user_id=user.id)
    return ok(leaderboard)
