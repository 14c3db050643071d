"""User lookup service."""

import logging

from src.core import db_client
from src.core.errors import NotFoundError
from src.domain.user import User, UserSummary


logger = logging.getLogger(__name__)


async def get_user(*, user_id: str) -> User:
    """Fetch a user by ID.

    Raises:
        NotFoundError: If the user does not exist
    """
    try:
        record = await db_client.get_record(collection="users", record_id=user_id)
    except KeyError as e:
        raise NotFoundError("User not found") from e
    return User.model_validate(record)


async def get_user_summary(*, user_id: str) -> UserSummary:
    user = await get_user(user_id=user_id)
    return UserSummary(
        id=user.id,
        username=user.username,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
    )
