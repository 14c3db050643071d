"""Read-only access to squads, communities, roles and friendships."""

import logging

from src.core import db_client
from src.core.config import Constants
from src.core.db_client import sanitize_param
from src.domain.task import Target, TargetKind
from src.domain.user import FriendshipStatus, MemberRole


logger = logging.getLogger(__name__)


_MEMBERSHIP_TABLES = {
    TargetKind.SQUAD: ("squad_members", "squad_id"),
    TargetKind.COMMUNITY: ("community_members", "community_id"),
}


async def get_role(*, user_id: str, target: Target) -> MemberRole | None:
    """Return the user's role in a squad or community, or None if not a member."""
    collection, column = _MEMBERSHIP_TABLES[target.kind]
    record = await db_client.get_first_record(
        collection=collection,
        filter_query=f'{column} = "{sanitize_param(target.id)}" && user_id = "{sanitize_param(user_id)}"',
    )
    if record is None:
        return None
    return MemberRole(record["role"])


async def can_moderate(*, user_id: str, target: Target) -> bool:
    role = await get_role(user_id=user_id, target=target)
    return role is not None and role in Constants.MODERATOR_ROLES


async def member_targets(*, user_id: str) -> list[Target]:
    """Every squad and community the user belongs to, with any role."""
    return [target for target, _role in await _memberships(user_id=user_id)]


async def moderated_targets(*, user_id: str) -> list[Target]:
    """Squads and communities where the user is owner, admin or moderator."""
    return [target for target, role in await _memberships(user_id=user_id) if role in Constants.MODERATOR_ROLES]


async def _memberships(*, user_id: str) -> list[tuple[Target, str]]:
    memberships: list[tuple[Target, str]] = []
    for kind, (collection, column) in _MEMBERSHIP_TABLES.items():
        records = await db_client.list_all_records(
            collection=collection,
            filter_query=f'user_id = "{sanitize_param(user_id)}"',
        )
        memberships.extend((Target(kind=kind, id=record[column]), record["role"]) for record in records)
    return memberships


async def get_community_multiplier(*, community_id: str | None) -> float:
    """Current XP multiplier of a community; 1.0 when there is none."""
    if not community_id:
        return Constants.MIN_XP_MULTIPLIER
    try:
        community = await db_client.get_record(collection="communities", record_id=community_id)
    except KeyError:
        logger.warning("Community referenced but missing", extra={"community_id": community_id})
        return Constants.MIN_XP_MULTIPLIER
    return float(community.get("xp_multiplier") or Constants.MIN_XP_MULTIPLIER)


async def are_friends(*, user_id: str, other_user_id: str) -> bool:
    """True if an accepted friendship exists in either direction."""
    for requester, addressee in ((user_id, other_user_id), (other_user_id, user_id)):
        record = await db_client.get_first_record(
            collection="friendships",
            filter_query=(
                f'requester_id = "{sanitize_param(requester)}" && addressee_id = "{sanitize_param(addressee)}" '
                f'&& status = "{FriendshipStatus.ACCEPTED}"'
            ),
        )
        if record is not None:
            return True
    return False


async def accepted_friend_ids(*, user_id: str) -> list[str]:
    """IDs of every user with an accepted friendship with ``user_id``."""
    safe_id = sanitize_param(user_id)
    sent = await db_client.list_all_records(
        collection="friendships",
        filter_query=f'requester_id = "{safe_id}" && status = "{FriendshipStatus.ACCEPTED}"',
    )
    received = await db_client.list_all_records(
        collection="friendships",
        filter_query=f'addressee_id = "{safe_id}" && status = "{FriendshipStatus.ACCEPTED}"',
    )
    friend_ids = [record["addressee_id"] for record in sent] + [record["requester_id"] for record in received]
    return list(dict.fromkeys(friend_ids))
