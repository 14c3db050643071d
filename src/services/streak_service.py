"""Streak and XP computation for a single task completion.

Pure functions: no I/O, no clock reads. Callers pass ``now`` and the day
boundary policy so results are reproducible in tests.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo

from src.core.config import Constants, settings
from src.domain.task import Difficulty, Task


BASE_XP_BY_DIFFICULTY: dict[str, int] = {
    Difficulty.EASY: 25,
    Difficulty.MEDIUM: 50,
    Difficulty.HARD: 100,
    Difficulty.EXTREME: 200,
}


@dataclass(frozen=True)
class DayBoundary:
    """Decides which calendar day a moment belongs to.

    ``tz=None`` uses the server's local timezone.
    """

    tz: tzinfo | None = None

    def localize(self, moment: datetime) -> datetime:
        return moment.astimezone(self.tz)

    def start_of_day(self, moment: datetime) -> datetime:
        return self.localize(moment).replace(hour=0, minute=0, second=0, microsecond=0)

    def day_of(self, moment: datetime) -> date:
        return self.localize(moment).date()


def day_boundary_from_settings() -> DayBoundary:
    """Build the configured day boundary (``STREAK_TIMEZONE``)."""
    if settings.streak_timezone:
        return DayBoundary(tz=ZoneInfo(settings.streak_timezone))
    return DayBoundary()


@dataclass(frozen=True)
class CompletionComputation:
    new_streak: int
    longest_streak: int
    base_xp: int
    streak_bonus: int
    multiplier_bonus: int
    total_xp: int
    requires_verification: bool


def base_xp_for(difficulty: str | None) -> int:
    """Base XP for a difficulty tier; unknown or missing tiers earn the default."""
    if difficulty is None:
        return Constants.DEFAULT_BASE_XP
    return BASE_XP_BY_DIFFICULTY.get(difficulty, Constants.DEFAULT_BASE_XP)


def streak_bonus_for(streak: int) -> int:
    return min(streak * Constants.STREAK_BONUS_PER_DAY, Constants.STREAK_BONUS_CAP)


def clamp_multiplier(multiplier: float | None) -> float:
    if multiplier is None:
        return Constants.MIN_XP_MULTIPLIER
    return min(max(multiplier, Constants.MIN_XP_MULTIPLIER), Constants.MAX_XP_MULTIPLIER)


def multiplier_bonus_for(base_xp: int, multiplier: float | None) -> int:
    return math.floor(base_xp * (clamp_multiplier(multiplier) - 1))


def continues_streak(last_completed: datetime | None, now: datetime, day_boundary: DayBoundary) -> bool:
    """True if the last completion happened yesterday or later."""
    if last_completed is None:
        return False
    yesterday = day_boundary.start_of_day(now) - timedelta(days=1)
    return last_completed >= yesterday


def compute_completion(
    task: Task,
    now: datetime,
    multiplier: float | None = None,
    day_boundary: DayBoundary | None = None,
) -> CompletionComputation:
    """Compute streak and XP for completing ``task`` at ``now``.

    Args:
        task: Task being completed, with its streak state before this completion
        now: Timezone-aware completion time
        multiplier: Community XP multiplier, clamped to [1, 2]; None means 1
        day_boundary: Calendar-day policy; defaults to server local time

    Returns:
        CompletionComputation with the new streak state and XP breakdown
    """
    boundary = day_boundary or DayBoundary()

    if continues_streak(task.last_completed_date, now, boundary):
        new_streak = task.current_streak + 1
    else:
        new_streak = 1

    base_xp = base_xp_for(task.difficulty)
    streak_bonus = streak_bonus_for(new_streak)
    multiplier_bonus = multiplier_bonus_for(base_xp, multiplier)

    return CompletionComputation(
        new_streak=new_streak,
        longest_streak=max(task.longest_streak, new_streak),
        base_xp=base_xp,
        streak_bonus=streak_bonus,
        multiplier_bonus=multiplier_bonus,
        total_xp=base_xp + streak_bonus + multiplier_bonus,
        requires_verification=task.requires_proof,
    )
