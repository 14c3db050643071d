"""User, membership and presence domain models."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from src.domain.base import ApiModel


class MemberRole(StrEnum):
    """Role of a user inside a squad or community."""

    OWNER = "owner"
    ADMIN = "admin"
    MODERATOR = "moderator"
    MEMBER = "member"


class FriendshipStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    BLOCKED = "blocked"


class PresenceStatus(StrEnum):
    """Presence shown to friends."""

    ONLINE = "online"
    OFFLINE = "offline"
    BUSY = "busy"
    AWAY = "away"


class Identity(BaseModel):
    """Authenticated principal attached to a request or socket."""

    id: str = Field(..., description="User ID")
    email: str = Field(..., description="Email address")
    username: str = Field(..., description="Unique handle")


class User(ApiModel):
    """User data transfer object."""

    id: str = Field(..., description="Unique user ID from database")
    email: str = Field(..., description="Email address")
    username: str = Field(..., description="Unique handle")
    display_name: str | None = Field(default=None, description="Name shown in the UI")
    avatar_url: str | None = Field(default=None, description="Avatar image URL")
    total_xp: int = Field(default=0, ge=0, description="Sum of all credited XP")
    current_streak: int = Field(default=0, ge=0, description="Account-level streak")
    last_activity_date: datetime | None = Field(default=None, description="Last XP credit")
    created_at: datetime | None = Field(default=None, description="Creation timestamp")

    @property
    def name(self) -> str:
        return self.display_name or self.username

    def to_identity(self) -> Identity:
        return Identity(id=self.id, email=self.email, username=self.username)


class UserSummary(ApiModel):
    """Public slice of a user embedded in other payloads."""

    id: str
    username: str
    display_name: str | None = None
    avatar_url: str | None = None

