"""Task completion pipeline: idempotency, streak/XP, persistence, queueing."""

import logging
from datetime import UTC, datetime

from src.core import db_client
from src.core.db_client import UniqueConstraintError, sanitize_param
from src.core.errors import AlreadyCompletedError, NotFoundError
from src.core.logging import log_with_user_context, span
from src.domain.completion import Proof, TaskCompletion, VerificationStatus
from src.domain.task import Task
from src.domain.verification import QueueStatus
from src.models.service_models import CompletionResult, XpBreakdown
from src.services import leaderboard_service, membership_service, xp_service
from src.services.streak_service import DayBoundary, compute_completion, day_boundary_from_settings


logger = logging.getLogger(__name__)


async def get_owned_active_task(*, task_id: str, user_id: str) -> Task:
    """Load a task the user owns and can still complete.

    Raises:
        NotFoundError: If the task is missing, owned by someone else, or inactive
    """
    try:
        record = await db_client.get_record(collection="tasks", record_id=task_id)
    except KeyError as e:
        raise NotFoundError("Task not found") from e

    task = Task.model_validate(record)
    if task.user_id != user_id or not task.is_active:
        raise NotFoundError("Task not found")
    return task


async def complete_task(
    *,
    task_id: str,
    user_id: str,
    proof: Proof | None = None,
    now: datetime | None = None,
    day_boundary: DayBoundary | None = None,
) -> CompletionResult:
    """Record that ``user_id`` completed ``task_id`` now.

    Auto-verified completions credit XP immediately; proof-requiring ones are
    queued for the task's squad or community and earn nothing until approved.
    The completion insert, streak update and XP credit or queue insert commit
    together or not at all.

    Raises:
        NotFoundError: If the task is missing, not owned, or inactive
        AlreadyCompletedError: If the task was already completed today
    """
    with span("completion_service.complete_task"):
        now = now or datetime.now(UTC)
        boundary = day_boundary or day_boundary_from_settings()
        today = boundary.day_of(now)

        task = await get_owned_active_task(task_id=task_id, user_id=user_id)

        existing = await db_client.get_first_record(
            collection="task_completions",
            filter_query=f'task_id = "{sanitize_param(task.id)}" && completion_day = "{today.isoformat()}"',
        )
        if existing is not None:
            raise AlreadyCompletedError()

        multiplier = await membership_service.get_community_multiplier(community_id=task.community_id)
        computation = compute_completion(task, now, multiplier=multiplier, day_boundary=boundary)

        status = VerificationStatus.PENDING if computation.requires_verification else VerificationStatus.AUTO_VERIFIED
        target = task.target

        try:
            async with db_client.transaction():
                completion_record = await db_client.create_record(
                    collection="task_completions",
                    data={
                        "task_id": task.id,
                        "user_id": user_id,
                        "completion_day": today,
                        "completed_at": now,
                        "proof_url": str(proof.url) if proof else None,
                        "proof_type": proof.type if proof else None,
                        "verification_status": status,
                        "xp_earned": computation.total_xp if status == VerificationStatus.AUTO_VERIFIED else 0,
                        "streak_bonus": computation.streak_bonus,
                        "multiplier_bonus": computation.multiplier_bonus,
                    },
                )
                await db_client.update_record(
                    collection="tasks",
                    record_id=task.id,
                    data={
                        "current_streak": computation.new_streak,
                        "longest_streak": computation.longest_streak,
                        "last_completed_date": now,
                    },
                )

                if status == VerificationStatus.AUTO_VERIFIED:
                    await xp_service.credit_xp(
                        user_id=user_id,
                        amount=computation.total_xp,
                        source_id=completion_record["id"],
                        base_amount=computation.base_xp,
                        streak=computation.new_streak,
                        community_multiplier=multiplier,
                        description=xp_service.describe_credit(
                            title=f"Completed: {task.title}",
                            base=computation.base_xp,
                            streak_bonus=computation.streak_bonus,
                            multiplier_bonus=computation.multiplier_bonus,
                        ),
                        now=now,
                    )
                    if computation.new_streak == 1:
                        # A task starting a fresh streak counts toward the account streak
                        await db_client.increment_field(
                            collection="users", record_id=user_id, field="current_streak", amount=1
                        )
                elif target is not None:
                    await db_client.create_record(
                        collection="verification_queue",
                        data={
                            "completion_id": completion_record["id"],
                            "target_kind": target.kind,
                            "target_id": target.id,
                            "status": QueueStatus.PENDING,
                            "priority": 0,
                            "created_at": now,
                        },
                    )
        except UniqueConstraintError as e:
            # A concurrent request for the same task and day won the insert
            raise AlreadyCompletedError() from e

        if status == VerificationStatus.PENDING and target is None:
            logger.warning(
                "Proof-required task has no squad or community; completion stays pending without a reviewer",
                extra={"task_id": task.id, "completion_id": completion_record["id"]},
            )

        log_with_user_context(
            logger,
            "info",
            f"Task {task.id} completed (streak={computation.new_streak}, xp={computation.total_xp}, status={status})",
            user_id=user_id,
            task_id=task.id,
            completion_id=completion_record["id"],
        )

        if status == VerificationStatus.AUTO_VERIFIED:
            await leaderboard_service.publish_xp_update(user_id=user_id)

        return CompletionResult(
            completion=TaskCompletion.model_validate(completion_record),
            xp_breakdown=XpBreakdown(
                base=computation.base_xp,
                streak_bonus=computation.streak_bonus,
                multiplier_bonus=computation.multiplier_bonus,
                total=computation.total_xp,
            ),
            streak=computation.new_streak,
        )
