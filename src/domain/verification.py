"""Verification queue and AI settings domain models."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from src.core.config import Constants
from src.domain.base import ApiModel
from src.domain.task import Target, TargetKind


class QueueStatus(StrEnum):
    """pending -> verified | rejected; both terminal."""

    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class AiProvider(StrEnum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


class QueueEntry(ApiModel):
    """Verification queue entry data transfer object."""

    id: str = Field(..., description="Unique entry ID")
    completion_id: str = Field(..., description="Completion awaiting review")
    target_kind: TargetKind = Field(..., description="squad or community")
    target_id: str = Field(..., description="ID of the squad or community")
    status: QueueStatus = Field(default=QueueStatus.PENDING, description="Review state")
    priority: int = Field(default=0, description="Higher is reviewed first")
    created_at: datetime = Field(..., description="Submission timestamp")
    resolved_at: datetime | None = Field(default=None, description="Resolution timestamp")

    @property
    def target(self) -> Target:
        return Target(kind=self.target_kind, id=self.target_id)


class AiSettings(BaseModel):
    """AI verification configuration for one squad or community."""

    id: str
    target_kind: TargetKind
    target_id: str
    provider: str
    model: str | None = None
    api_key_encrypted: str
    confidence_threshold: float = Field(default=Constants.DEFAULT_CONFIDENCE_THRESHOLD, ge=0.0, le=1.0)
    verification_prompt: str | None = None


class RejectRequest(ApiModel):
    reason: str | None = Field(default=None, max_length=500)
