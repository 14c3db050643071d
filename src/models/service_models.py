"""Pydantic models for service layer return types.

These models provide type safety at service boundaries, converting database
dictionaries into typed objects with validation.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from src.domain.base import ApiModel
from src.domain.completion import TaskCompletion
from src.domain.message import Message
from src.domain.task import Task
from src.domain.user import PresenceStatus, UserSummary
from src.domain.verification import QueueEntry


class XpBreakdown(ApiModel):
    """How a completion's XP adds up."""

    base: int
    streak_bonus: int
    multiplier_bonus: int
    total: int


class CompletionResult(ApiModel):
    """Outcome of completing a task, returned whether or not XP was credited."""

    completion: TaskCompletion
    xp_breakdown: XpBreakdown
    streak: int


class QueueItem(ApiModel):
    """Queue entry enriched with what a moderator needs to decide."""

    entry: QueueEntry
    completion: TaskCompletion
    task: Task
    submitter: UserSummary


class VerificationDecision(ApiModel):
    """Result of a manual approve/reject."""

    entry_id: str
    completion_id: str
    status: str
    xp_awarded: int = 0


class AiVerificationResult(ApiModel):
    """Result of running the AI judge on a queue entry."""

    confidence: float
    auto_approved: bool = False
    reason: str
    threshold: float | None = None


class Judgement(BaseModel):
    """Structured output expected from an AI judge."""

    confidence: float = Field(..., ge=0.0, le=1.0, description="Probability the proof shows the task was done")
    reason: str = Field(..., description="One or two sentences explaining the decision")


class LeaderboardEntry(ApiModel):
    """User entry in the XP leaderboard."""

    rank: int
    user_id: str
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    total_xp: int
    current_streak: int = 0
    period_xp: int
    is_current_user: bool = False


class Leaderboard(ApiModel):
    period: str
    entries: list[LeaderboardEntry]
    current_user: LeaderboardEntry | None = None


class LastMessage(ApiModel):
    content: str
    created_at: datetime
    is_own: bool


class ConversationFriend(UserSummary):
    status: PresenceStatus = PresenceStatus.OFFLINE


class ConversationSummary(ApiModel):
    """One row of the conversations list."""

    id: str
    friend: ConversationFriend | None = None
    last_message: LastMessage | None = None
    last_read_at: datetime | None = None
    has_unread: bool = False
    updated_at: datetime


class MessageView(Message):
    """Message plus the sender details shown next to it."""

    sender: UserSummary | None = None


class MessagePage(ApiModel):
    """A page of history, oldest first, with a cursor to older messages."""

    messages: list[MessageView]
    has_more: bool
    next_cursor: str | None = None


class SentMessage(ApiModel):
    message: MessageView
    conversation_id: str
