"""Task domain models and enums."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.domain.base import ApiModel


MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 1000


class Difficulty(StrEnum):
    """Difficulty tier; decides base XP."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXTREME = "extreme"


class Frequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    ONE_TIME = "one-time"


class Visibility(StrEnum):
    PRIVATE = "private"
    FRIENDS = "friends"
    SQUAD = "squad"
    COMMUNITY = "community"
    PUBLIC = "public"


class TargetKind(StrEnum):
    """Kind of group a task (and its verification) belongs to."""

    SQUAD = "squad"
    COMMUNITY = "community"


class Target(BaseModel):
    """A squad or a community, never both."""

    model_config = ConfigDict(frozen=True)

    kind: TargetKind
    id: str

    @property
    def room(self) -> str:
        return f"{self.kind}:{self.id}"

    @classmethod
    def squad(cls, squad_id: str) -> "Target":
        return cls(kind=TargetKind.SQUAD, id=squad_id)

    @classmethod
    def community(cls, community_id: str) -> "Target":
        return cls(kind=TargetKind.COMMUNITY, id=community_id)


class Task(ApiModel):
    """Task data transfer object."""

    id: str = Field(..., description="Unique task ID from database")
    user_id: str = Field(..., description="Owner user ID")
    title: str = Field(..., description="Task title")
    description: str | None = Field(default=None, description="Detailed task description")
    category: str | None = Field(default=None, description="Free-form category")
    difficulty: str = Field(default=Difficulty.MEDIUM, description="Difficulty tier (unknown tiers earn default XP)")
    base_xp: int = Field(default=50, description="Base XP derived from difficulty at creation")
    frequency: str = Field(default=Frequency.DAILY, description="daily, weekly or one-time")
    visibility: str = Field(default=Visibility.PRIVATE, description="Who can see the task")
    squad_id: str | None = Field(default=None, description="Owning squad, exclusive with community")
    community_id: str | None = Field(default=None, description="Owning community, exclusive with squad")
    requires_proof: bool = Field(default=False, description="Completions need moderator verification")
    current_streak: int = Field(default=0, ge=0, description="Consecutive days completed")
    longest_streak: int = Field(default=0, ge=0, description="Best streak ever reached")
    last_completed_date: datetime | None = Field(default=None, description="Last completion timestamp")
    is_active: bool = Field(default=True, description="Inactive tasks cannot be completed")
    created_at: datetime | None = Field(default=None, description="Creation timestamp")

    @property
    def target(self) -> Target | None:
        if self.squad_id:
            return Target.squad(self.squad_id)
        if self.community_id:
            return Target.community(self.community_id)
        return None


class TaskCreate(ApiModel):
    """Payload for creating a task."""

    title: str
    description: str | None = None
    category: str | None = Field(default=None, max_length=50)
    difficulty: Difficulty = Difficulty.MEDIUM
    frequency: Frequency = Frequency.DAILY
    visibility: Visibility = Visibility.PRIVATE
    squad_id: str | None = None
    community_id: str | None = None
    requires_proof: bool = False

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title cannot be empty")
        if len(v) > MAX_TITLE_LENGTH:
            raise ValueError(f"Title too long (max {MAX_TITLE_LENGTH} characters)")
        return v

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str | None) -> str | None:
        if v is not None and len(v) > MAX_DESCRIPTION_LENGTH:
            raise ValueError(f"Description too long (max {MAX_DESCRIPTION_LENGTH} characters)")
        return v

    @model_validator(mode="after")
    def validate_single_target(self) -> "TaskCreate":
        if self.squad_id and self.community_id:
            raise ValueError("A task belongs to a squad or a community, not both")
        return self
