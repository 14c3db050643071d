"""Task CRUD for the task owner."""

import logging
from datetime import UTC, datetime

from src.core import db_client
from src.core.config import Constants
from src.core.db_client import sanitize_param
from src.core.errors import NotFoundError, PermissionDeniedError
from src.core.logging import span
from src.domain.task import Task, TaskCreate
from src.services import membership_service
from src.services.streak_service import base_xp_for


logger = logging.getLogger(__name__)


async def create_task(*, user_id: str, task: TaskCreate) -> Task:
    """Create a task owned by ``user_id``.

    Base XP is fixed from the difficulty tier at creation time.

    Raises:
        PermissionDeniedError: If the task targets a squad or community the user is not in
    """
    with span("task_service.create_task"):
        data = task.model_dump()
        target = Task.model_validate({"id": "0", "user_id": user_id, **data}).target
        if target is not None and await membership_service.get_role(user_id=user_id, target=target) is None:
            raise PermissionDeniedError(f"Not a member of this {target.kind}")

        record = await db_client.create_record(
            collection="tasks",
            data={
                **data,
                "user_id": user_id,
                "base_xp": base_xp_for(task.difficulty),
                "created_at": datetime.now(UTC),
            },
        )
        logger.info("Created task %s for user %s", record["id"], user_id)
        return Task.model_validate(record)


async def list_tasks(
    *,
    user_id: str,
    category: str | None = None,
    frequency: str | None = None,
    visibility: str | None = None,
    is_active: bool | None = None,
) -> list[Task]:
    """The user's tasks, newest first, optionally filtered."""
    filters = [f'user_id = "{sanitize_param(user_id)}"']
    if category:
        filters.append(f'category = "{sanitize_param(category)}"')
    if frequency:
        filters.append(f'frequency = "{sanitize_param(frequency)}"')
    if visibility:
        filters.append(f'visibility = "{sanitize_param(visibility)}"')
    if is_active is not None:
        filters.append(f'is_active = "{str(is_active).lower()}"')

    records = await db_client.list_records(
        collection="tasks",
        filter_query=" && ".join(filters),
        sort="-created_at,-id",
        per_page=Constants.DEFAULT_PER_PAGE_LIMIT,
    )
    return [Task.model_validate(record) for record in records]


async def get_task(*, task_id: str, user_id: str) -> Task:
    """Fetch one of the user's tasks.

    Raises:
        NotFoundError: If the task does not exist or belongs to someone else
    """
    try:
        record = await db_client.get_record(collection="tasks", record_id=task_id)
    except KeyError as e:
        raise NotFoundError("Task not found") from e

    task = Task.model_validate(record)
    if task.user_id != user_id:
        raise NotFoundError("Task not found")
    return task


async def delete_task(*, task_id: str, user_id: str) -> None:
    """Delete one of the user's tasks along with its completions."""
    with span("task_service.delete_task"):
        task = await get_task(task_id=task_id, user_id=user_id)
        await db_client.delete_record(collection="tasks", record_id=task.id)
        logger.info("Deleted task %s", task.id, extra={"user_id": user_id})
