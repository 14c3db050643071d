"""Moderator endpoints for the verification queue."""

from typing import Any

from fastapi import APIRouter, Depends

from src.domain.user import Identity
from src.domain.verification import RejectRequest
from src.interface.deps import get_current_user, ok
from src.services import verification_service


router = APIRouter(prefix="/verification", tags=["verification"])


@router.get("/queue")
async def get_queue(user: Identity = Depends(get_current_user)) -> dict[str, Any]:
    return ok(await verification_service.list_queue(user_id=user.id))


@router.post("/{entry_id}/approve")
async def approve(entry_id: str, user: Identity = Depends(get_current_user)) -> dict[str, Any]:
    return ok(await verification_service.approve(entry_id=entry_id, actor_id=user.id))


@router.post("/{entry_id}/reject")
async def reject(
    entry_id: str,
    body: RejectRequest | None = None,
    user: Identity = Depends(get_current_user),
) -> dict[str, Any]:
    reason = body.reason if body else None
    return ok(await verification_service.reject(entry_id=entry_id, actor_id=user.id, reason=reason))


@router.post("/{entry_id}/ai-verify")
async def ai_verify(entry_id: str, user: Identity = Depends(get_current_user)) -> dict[str, Any]:
    """Ask the target's AI judge; auto-approves at or above the confidence threshold."""
    return ok(await verification_service.ai_verify(entry_id=entry_id, actor_id=user.id))
