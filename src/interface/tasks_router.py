"""Task endpoints: CRUD and completion."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, status

from src.domain.completion import CompleteTaskRequest
from src.domain.task import TaskCreate
from src.domain.user import Identity
from src.interface.deps import get_current_user, ok
from src.services import completion_service, task_service


router = APIRouter(prefix="/tasks", tags=["tasks"])
logger = logging.getLogger(__name__)


@router.get("")
async def list_tasks(
    category: str | None = None,
    frequency: str | None = None,
    visibility: str | None = None,
    active: bool | None = Query(default=None),
    user: Identity = Depends(get_current_user),
) -> dict[str, Any]:
    tasks = await task_service.list_tasks(
        user_id=user.id,
        category=category,
        frequency=frequency,
        visibility=visibility,
        is_active=active,
    )
    return ok(tasks)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_task(body: TaskCreate, user: Identity = Depends(get_current_user)) -> dict[str, Any]:
    task = await task_service.create_task(user_id=user.id, task=body)
    return ok(task)


@router.get("/{task_id}")
async def get_task(task_id: str, user: Identity = Depends(get_current_user)) -> dict[str, Any]:
    return ok(await task_service.get_task(task_id=task_id, user_id=user.id))


@router.delete("/{task_id}")
async def delete_task(task_id: str, user: Identity = Depends(get_current_user)) -> dict[str, Any]:
    await task_service.delete_task(task_id=task_id, user_id=user.id)
    return ok({"message": "Task deleted"})


@router.post("/{task_id}/complete")
async def complete_task(
    task_id: str,
    body: CompleteTaskRequest | None = None,
    user: Identity = Depends(get_current_user),
) -> dict[str, Any]:
    """Complete a task for today; returns the completion, XP breakdown and streak."""
    proof = body.to_proof() if body else None
    result = await completion_service.complete_task(task_id=task_id, user_id=user.id, proof=proof)
    return ok(result)
