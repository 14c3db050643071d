"""XP leaderboard computed from the ledger.

Key Concepts:
- Period XP: sum of a user's xp_transactions created since the period start.
  ``allTime`` uses ``users.total_xp`` (equal to the full ledger sum).
- The full ranking per period is cached in Redis and invalidated after every
  XP credit; a stale ranking lives at most CACHE_TTL_LEADERBOARD_SECONDS.
"""

import json
import logging
from collections import defaultdict
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError

from src.core import db_client
from src.core.config import Constants
from src.core.logging import span
from src.core.redis_client import redis_client
from src.domain.xp import LeaderboardPeriod
from src.models.service_models import Leaderboard, LeaderboardEntry
from src.services import realtime_hub
from src.services.streak_service import DayBoundary, day_boundary_from_settings


logger = logging.getLogger(__name__)

_CACHE_KEY_PREFIX = "questline:leaderboard"


def period_start(
    period: LeaderboardPeriod,
    now: datetime,
    day_boundary: DayBoundary | None = None,
) -> datetime | None:
    """Earliest ledger timestamp counted for a period; None for all time."""
    match period:
        case LeaderboardPeriod.DAILY:
            return (day_boundary or day_boundary_from_settings()).start_of_day(now)
        case LeaderboardPeriod.WEEKLY:
            return now - timedelta(days=7)
        case LeaderboardPeriod.MONTHLY:
            return now - timedelta(days=30)
        case _:
            return None


async def invalidate_leaderboard_cache() -> None:
    """Invalidate all leaderboard cache entries.

    Failures are logged, never raised: a stale leaderboard (up to the TTL) is acceptable.
    """
    deleted = await redis_client.delete_matching(f"{_CACHE_KEY_PREFIX}:*")
    if deleted:
        logger.info("Invalidated %d leaderboard cache entries", deleted)


async def _rank_users(period: LeaderboardPeriod, now: datetime) -> list[LeaderboardEntry]:
    users = await db_client.list_all_records(collection="users")

    start = period_start(period, now)
    if start is None:
        period_xp = {user["id"]: int(user["total_xp"]) for user in users}
    else:
        transactions = await db_client.list_all_records(
            collection="xp_transactions",
            filter_query=f'created_at >= "{db_client.format_timestamp(start)}"',
        )
        period_xp = defaultdict(int)
        for transaction in transactions:
            period_xp[transaction["user_id"]] += int(transaction["amount"])

    ordered = sorted(users, key=lambda u: (-period_xp.get(u["id"], 0), -int(u["total_xp"]), int(u["id"])))
    return [
        LeaderboardEntry(
            rank=index,
            user_id=user["id"],
            username=user["username"],
            display_name=user.get("display_name"),
            avatar_url=user.get("avatar_url"),
            total_xp=int(user["total_xp"]),
            current_streak=int(user.get("current_streak") or 0),
            period_xp=period_xp.get(user["id"], 0),
        )
        for index, user in enumerate(ordered, start=1)
    ]


async def _get_ranking(period: LeaderboardPeriod) -> list[LeaderboardEntry]:
    cache_key = f"{_CACHE_KEY_PREFIX}:{period}"

    cached_value = await redis_client.get(cache_key)
    if cached_value:
        try:
            return [LeaderboardEntry.model_validate(entry) for entry in json.loads(cached_value)]
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Failed to deserialize cached leaderboard: %s", e)

    ranking = await _rank_users(period, datetime.now(UTC))

    cache_value = json.dumps([entry.model_dump(mode="json") for entry in ranking])
    await redis_client.set(cache_key, cache_value, Constants.CACHE_TTL_LEADERBOARD_SECONDS)
    return ranking


async def get_leaderboard(
    *,
    period: LeaderboardPeriod = LeaderboardPeriod.WEEKLY,
    limit: int = Constants.LEADERBOARD_DEFAULT_LIMIT,
    current_user_id: str | None = None,
) -> Leaderboard:
    """Top ``limit`` users by XP earned in the period, plus the caller's own row."""
    with span("leaderboard_service.get_leaderboard"):
        ranking = await _get_ranking(period)

        entries = [
            entry.model_copy(update={"is_current_user": entry.user_id == current_user_id})
            for entry in ranking[:limit]
        ]
        current_user = next(
            (entry.model_copy(update={"is_current_user": True}) for entry in ranking if entry.user_id == current_user_id),
            None,
        )
        return Leaderboard(period=period, entries=entries, current_user=current_user)


async def get_user_rank(*, user_id: str, period: LeaderboardPeriod = LeaderboardPeriod.ALL_TIME) -> LeaderboardEntry | None:
    ranking = await _get_ranking(period)
    return next((entry for entry in ranking if entry.user_id == user_id), None)


async def publish_xp_update(*, user_id: str) -> None:
    """After an XP credit: drop cached rankings and push ``leaderboard:update`` to the user.

    Best effort; failures are logged and never raised to the caller.
    """
    try:
        await invalidate_leaderboard_cache()
        entry = await get_user_rank(user_id=user_id)
        if entry is None:
            return
        await realtime_hub.hub.emit_to_user(
            user_id,
            "leaderboard:update",
            {"userId": user_id, "rank": entry.rank, "xp": entry.total_xp},
        )
    except Exception:
        logger.exception("Error publishing leaderboard update for user %s", user_id)
