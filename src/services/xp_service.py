"""XP ledger: balance increments paired with append-only transactions."""

import logging
from datetime import datetime

from src.core import db_client
from src.core.logging import span
from src.domain.xp import XpSource, XpTransaction


logger = logging.getLogger(__name__)


async def credit_xp(
    *,
    user_id: str,
    amount: int,
    source_id: str,
    base_amount: int,
    streak: int | None,
    community_multiplier: float,
    description: str,
    now: datetime,
) -> XpTransaction:
    """Credit XP to a user and append the matching ledger row.

    The balance is incremented in SQL (never read-modify-write) and both writes
    share one transaction, joining the caller's transaction if one is open.
    """
    with span("xp_service.credit_xp"):
        async with db_client.transaction():
            await db_client.increment_field(collection="users", record_id=user_id, field="total_xp", amount=amount)
            await db_client.update_record(collection="users", record_id=user_id, data={"last_activity_date": now})
            record = await db_client.create_record(
                collection="xp_transactions",
                data={
                    "user_id": user_id,
                    "amount": amount,
                    "source": XpSource.TASK_COMPLETION,
                    "source_id": source_id,
                    "base_amount": base_amount,
                    "streak_multiplier": streak,
                    "community_multiplier": community_multiplier,
                    "description": description,
                    "created_at": now,
                },
            )

        logger.info(
            "Credited %d XP to user %s",
            amount,
            user_id,
            extra={"user_id": user_id, "amount": amount, "source_id": source_id},
        )
        return XpTransaction.model_validate(record)


def describe_credit(*, title: str, base: int, streak_bonus: int, multiplier_bonus: int) -> str:
    """Human-readable ledger description carrying the full XP breakdown."""
    return f"{title} (base {base} + streak bonus {streak_bonus} + multiplier bonus {multiplier_bonus})"
