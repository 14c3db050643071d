"""XP ledger domain models."""

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from src.domain.base import ApiModel


class XpSource(StrEnum):
    TASK_COMPLETION = "task_completion"


class XpTransaction(ApiModel):
    """Append-only ledger row; the per-user sum equals ``users.total_xp``."""

    id: str
    user_id: str
    amount: int = Field(..., ge=0)
    source: str
    source_id: str | None = None
    base_amount: int | None = None
    streak_multiplier: int | None = None
    community_multiplier: float | None = None
    description: str | None = None
    created_at: datetime


class LeaderboardPeriod(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "allTime"
