"""Verification queue: moderator worklist, approve/reject, AI-assisted review.

State machine per entry: pending -> verified | rejected, both terminal. The
transition is a guarded update (``WHERE status = 'pending'``) inside the same
transaction as the XP credit, so an entry can be credited at most once.
"""

import logging
from datetime import UTC, datetime

from src.core import db_client, encryption
from src.core.config import settings
from src.core.db_client import sanitize_param
from src.core.errors import (
    AlreadyResolvedError,
    MisconfiguredVerifierError,
    MissingProofError,
    NotFoundError,
    PermissionDeniedError,
)
from src.core.logging import log_with_user_context, span
from src.domain.completion import TaskCompletion, VerificationStatus
from src.domain.notification import NotificationType
from src.domain.task import Task
from src.domain.verification import AiSettings, QueueEntry, QueueStatus
from src.models.service_models import AiVerificationResult, Judgement, QueueItem, VerificationDecision
from src.services import (
    ai_verifier,
    leaderboard_service,
    membership_service,
    notification_service,
    realtime_hub,
    user_service,
    xp_service,
)
from src.services.streak_service import base_xp_for, multiplier_bonus_for


logger = logging.getLogger(__name__)


async def _load_entry(entry_id: str) -> QueueEntry:
    try:
        record = await db_client.get_record(collection="verification_queue", record_id=entry_id)
    except KeyError as e:
        raise NotFoundError("Verification entry not found") from e
    return QueueEntry.model_validate(record)


async def _load_completion(completion_id: str) -> TaskCompletion:
    record = await db_client.get_record(collection="task_completions", record_id=completion_id)
    return TaskCompletion.model_validate(record)


async def _load_task(task_id: str) -> Task:
    record = await db_client.get_record(collection="tasks", record_id=task_id)
    return Task.model_validate(record)


async def _load_for_moderator(*, entry_id: str, actor_id: str) -> QueueEntry:
    """Load an entry and check the actor moderates its squad or community.

    Raises:
        NotFoundError: If the entry does not exist
        PermissionDeniedError: If the actor lacks a moderation role on the target
    """
    entry = await _load_entry(entry_id)
    if not await membership_service.can_moderate(user_id=actor_id, target=entry.target):
        logger.warning(
            "Verification permission denied",
            extra={"entry_id": entry_id, "actor_id": actor_id, "target": entry.target.room},
        )
        raise PermissionDeniedError("Permission denied")
    return entry


async def _claim_entry(*, entry_id: str, status: QueueStatus, now: datetime) -> None:
    """Flip a pending entry to a terminal status or fail if someone got there first."""
    changed = await db_client.update_where(
        collection="verification_queue",
        filter_query=f'id = "{sanitize_param(entry_id)}" && status = "{QueueStatus.PENDING}"',
        data={"status": status, "resolved_at": now},
    )
    if changed == 0:
        raise AlreadyResolvedError()


async def _push_status(*, user_id: str, completion_id: str, status: VerificationStatus) -> None:
    await realtime_hub.hub.emit_to_user(
        user_id,
        "verification:update",
        {"completionId": completion_id, "status": str(status)},
    )


async def list_queue(*, user_id: str) -> list[QueueItem]:
    """Pending entries for every squad/community the user moderates.

    Ordered by priority (highest first), then oldest first.
    """
    with span("verification_service.list_queue"):
        targets = set(await membership_service.moderated_targets(user_id=user_id))
        if not targets:
            return []

        records = await db_client.list_all_records(
            collection="verification_queue",
            filter_query=f'status = "{QueueStatus.PENDING}"',
            sort="-priority,created_at",
        )
        entries = [QueueEntry.model_validate(record) for record in records]
        entries = [entry for entry in entries if entry.target in targets]

        items = []
        for entry in entries:
            completion = await _load_completion(entry.completion_id)
            task = await _load_task(completion.task_id)
            submitter = await user_service.get_user_summary(user_id=completion.user_id)
            items.append(QueueItem(entry=entry, completion=completion, task=task, submitter=submitter))

        logger.info("Listed %d pending verifications for user %s", len(items), user_id)
        return items


async def approve(*, entry_id: str, actor_id: str, now: datetime | None = None) -> VerificationDecision:
    """Approve a pending entry and credit the submitter's XP exactly once.

    XP is recomputed with the community's *current* multiplier plus the streak
    bonus stored at completion time.

    Raises:
        NotFoundError: If the entry does not exist
        PermissionDeniedError: If the actor cannot moderate the entry's target
        AlreadyResolvedError: If the entry is no longer pending
    """
    with span("verification_service.approve"):
        entry = await _load_for_moderator(entry_id=entry_id, actor_id=actor_id)
        return await _approve_entry(entry=entry, actor_id=actor_id, now=now or datetime.now(UTC))


async def _approve_entry(*, entry: QueueEntry, actor_id: str, now: datetime) -> VerificationDecision:
    completion = await _load_completion(entry.completion_id)
    task = await _load_task(completion.task_id)

    multiplier = await membership_service.get_community_multiplier(community_id=task.community_id)
    base_xp = base_xp_for(task.difficulty)
    multiplier_bonus = multiplier_bonus_for(base_xp, multiplier)
    total_xp = base_xp + completion.streak_bonus + multiplier_bonus

    async with db_client.transaction():
        await _claim_entry(entry_id=entry.id, status=QueueStatus.VERIFIED, now=now)
        await db_client.update_record(
            collection="task_completions",
            record_id=completion.id,
            data={
                "verification_status": VerificationStatus.VERIFIED,
                "verified_by_id": actor_id,
                "verified_at": now,
                "xp_earned": total_xp,
            },
        )
        await xp_service.credit_xp(
            user_id=completion.user_id,
            amount=total_xp,
            source_id=completion.id,
            base_amount=base_xp,
            streak=None,
            community_multiplier=multiplier,
            description=xp_service.describe_credit(
                title="Task verified",
                base=base_xp,
                streak_bonus=completion.streak_bonus,
                multiplier_bonus=multiplier_bonus,
            ),
            now=now,
        )

    log_with_user_context(
        logger,
        "info",
        f"Verification {entry.id} approved (+{total_xp} XP)",
        user_id=completion.user_id,
        entry_id=entry.id,
        verifier_id=actor_id,
    )

    await notification_service.notify(
        user_id=completion.user_id,
        type=NotificationType.TASK_VERIFIED,
        title="Task Verified!",
        body=f"Your task was verified. +{total_xp} XP",
        reference_type="task_completion",
        reference_id=completion.id,
    )
    await _push_status(user_id=completion.user_id, completion_id=completion.id, status=VerificationStatus.VERIFIED)
    await leaderboard_service.publish_xp_update(user_id=completion.user_id)

    return VerificationDecision(
        entry_id=entry.id,
        completion_id=completion.id,
        status=QueueStatus.VERIFIED,
        xp_awarded=total_xp,
    )


async def reject(
    *,
    entry_id: str,
    actor_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> VerificationDecision:
    """Reject a pending entry; no XP changes hands.

    Raises:
        NotFoundError: If the entry does not exist
        PermissionDeniedError: If the actor cannot moderate the entry's target
        AlreadyResolvedError: If the entry is no longer pending
    """
    with span("verification_service.reject"):
        now = now or datetime.now(UTC)
        entry = await _load_for_moderator(entry_id=entry_id, actor_id=actor_id)
        completion = await _load_completion(entry.completion_id)

        async with db_client.transaction():
            await _claim_entry(entry_id=entry.id, status=QueueStatus.REJECTED, now=now)
            await db_client.update_record(
                collection="task_completions",
                record_id=completion.id,
                data={
                    "verification_status": VerificationStatus.REJECTED,
                    "verified_by_id": actor_id,
                    "verified_at": now,
                    "rejection_reason": reason,
                },
            )

        logger.info("Verification %s rejected by %s", entry.id, actor_id, extra={"reason": reason})

        await notification_service.notify(
            user_id=completion.user_id,
            type=NotificationType.TASK_REJECTED,
            title="Task Not Verified",
            body=reason or "Your task submission was not verified",
            reference_type="task_completion",
            reference_id=completion.id,
        )
        await _push_status(user_id=completion.user_id, completion_id=completion.id, status=VerificationStatus.REJECTED)

        return VerificationDecision(entry_id=entry.id, completion_id=completion.id, status=QueueStatus.REJECTED)


async def get_ai_settings(*, entry: QueueEntry) -> AiSettings | None:
    record = await db_client.get_first_record(
        collection="ai_settings",
        filter_query=(
            f'target_kind = "{entry.target_kind}" && target_id = "{sanitize_param(entry.target_id)}"'
        ),
    )
    return AiSettings.model_validate(record) if record else None


async def ai_verify(*, entry_id: str, actor_id: str, now: datetime | None = None) -> AiVerificationResult:
    """Score the proof with the target's AI judge; auto-approve above the threshold.

    Judge failures of any kind yield confidence 0 and leave the entry pending.

    Raises:
        NotFoundError: If the entry does not exist
        PermissionDeniedError: If the actor cannot moderate the entry's target
        AlreadyResolvedError: If the entry is no longer pending
        MisconfiguredVerifierError: If the target has no usable AI settings
        MissingProofError: If the completion carries no proof URL
    """
    with span("verification_service.ai_verify"):
        entry = await _load_for_moderator(entry_id=entry_id, actor_id=actor_id)
        if entry.status != QueueStatus.PENDING:
            raise AlreadyResolvedError()

        ai_settings = await get_ai_settings(entry=entry)
        if ai_settings is None:
            raise MisconfiguredVerifierError()

        completion = await _load_completion(entry.completion_id)
        if not completion.proof_url:
            raise MissingProofError()

        task = await _load_task(completion.task_id)
        judgement = await _run_judge(ai_settings=ai_settings, completion=completion, task=task)

        await db_client.update_record(
            collection="task_completions",
            record_id=completion.id,
            data={"ai_confidence": judgement.confidence},
        )
        logger.info(
            "AI judged verification %s: confidence=%.2f threshold=%.2f",
            entry.id,
            judgement.confidence,
            ai_settings.confidence_threshold,
        )

        if judgement.confidence >= ai_settings.confidence_threshold:
            try:
                await _approve_entry(entry=entry, actor_id=actor_id, now=now or datetime.now(UTC))
            except AlreadyResolvedError:
                logger.info("Entry %s resolved while the AI judge ran", entry.id)
            else:
                return AiVerificationResult(
                    confidence=judgement.confidence,
                    auto_approved=True,
                    reason=judgement.reason,
                )

        return AiVerificationResult(
            confidence=judgement.confidence,
            auto_approved=False,
            reason=judgement.reason,
            threshold=ai_settings.confidence_threshold,
        )


async def _run_judge(*, ai_settings: AiSettings, completion: TaskCompletion, task: Task) -> Judgement:
    try:
        api_key = encryption.decrypt(ai_settings.api_key_encrypted)
    except ValueError:
        logger.exception("Could not decrypt AI credential for %s", ai_settings.target_kind)
        return Judgement(confidence=0.0, reason=ai_verifier.FAILED_JUDGEMENT_REASON)

    verifier = ai_verifier.build_verifier(provider=ai_settings.provider, api_key=api_key, model=ai_settings.model)
    request = ai_verifier.JudgeRequest(
        image_url=completion.proof_url or "",
        task_title=task.title,
        task_description=task.description,
        custom_prompt=ai_settings.verification_prompt,
    )
    return await ai_verifier.judge_safely(verifier, request, timeout=settings.ai_verification_timeout_seconds)
