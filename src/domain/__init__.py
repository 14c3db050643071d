"""Domain models and DTOs."""

from src.domain.completion import Proof, ProofType, TaskCompletion, VerificationStatus
from src.domain.message import Message, MessageType
from src.domain.notification import Notification, NotificationType
from src.domain.task import Difficulty, Target, TargetKind, Task, TaskCreate
from src.domain.user import Identity, MemberRole, PresenceStatus, User, UserSummary
from src.domain.verification import AiProvider, AiSettings, QueueEntry, QueueStatus
from src.domain.xp import LeaderboardPeriod, XpSource, XpTransaction


__all__ = [
    "AiProvider",
    "AiSettings",
    "Difficulty",
    "Identity",
    "LeaderboardPeriod",
    "MemberRole",
    "Message",
    "MessageType",
    "Notification",
    "NotificationType",
    "PresenceStatus",
    "Proof",
    "ProofType",
    "QueueEntry",
    "QueueStatus",
    "Target",
    "TargetKind",
    "Task",
    "TaskCompletion",
    "TaskCreate",
    "User",
    "UserSummary",
    "VerificationStatus",
    "XpSource",
    "XpTransaction",
]
