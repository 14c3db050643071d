"""Task completion domain models and enums."""

from datetime import date, datetime
from enum import StrEnum

from pydantic import Field, HttpUrl

from src.domain.base import ApiModel


class VerificationStatus(StrEnum):
    """Lifecycle of a completion.

    ``auto_verified`` and ``verified`` have been credited; ``pending`` awaits a
    moderator; ``rejected`` never earns XP.
    """

    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    AUTO_VERIFIED = "auto_verified"


class ProofType(StrEnum):
    IMAGE = "image"
    VIDEO = "video"
    TEXT = "text"


class Proof(ApiModel):
    """Evidence attached to a completion."""

    url: HttpUrl = Field(..., description="Link to the proof artifact")
    type: ProofType | None = Field(default=None, description="Kind of artifact")


class TaskCompletion(ApiModel):
    """Task completion data transfer object."""

    id: str = Field(..., description="Unique completion ID")
    task_id: str = Field(..., description="Completed task")
    user_id: str = Field(..., description="User who completed the task")
    completion_day: date = Field(..., description="Calendar day the completion counts for")
    completed_at: datetime = Field(..., description="Exact completion timestamp")
    proof_url: str | None = Field(default=None, description="Proof artifact URL")
    proof_type: ProofType | None = Field(default=None, description="Kind of proof")
    verification_status: VerificationStatus = Field(..., description="Verification state")
    xp_earned: int = Field(default=0, ge=0, description="XP credited, zero until verified")
    streak_bonus: int = Field(default=0, ge=0, description="Streak bonus fixed at completion time")
    multiplier_bonus: int = Field(default=0, ge=0, description="Community bonus at completion time")
    ai_confidence: float | None = Field(default=None, description="Last AI judge confidence")
    rejection_reason: str | None = Field(default=None, description="Moderator-supplied reason")
    verified_by_id: str | None = Field(default=None, description="Moderator who verified")
    verified_at: datetime | None = Field(default=None, description="Verification timestamp")


class CompleteTaskRequest(ApiModel):
    """Body of a completion request; proof is optional."""

    proof_url: HttpUrl | None = Field(default=None, description="Link to the proof artifact")
    proof_type: ProofType | None = Field(default=None, description="Kind of artifact")

    def to_proof(self) -> Proof | None:
        if self.proof_url is None:
            return None
        return Proof(url=self.proof_url, type=self.proof_type)
