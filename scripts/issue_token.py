#!/usr/bin/env python3
"""Development script to mint a bearer token for a user.

Usage:
    uv run python scripts/issue_token.py <username>
    uv run python scripts/issue_token.py <username> --create --email <email>
"""

import asyncio
import logging
import sys
from datetime import UTC, datetime

from src.core import db_client
from src.core.db_client import sanitize_param
from src.domain.user import User
from src.services.auth_service import issue_token


logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


async def find_or_create_user(username: str, *, create: bool, email: str | None) -> User | None:
    """Look a user up by username, optionally creating it."""
    record = await db_client.get_first_record(
        collection="users",
        filter_query=f'username = "{sanitize_param(username)}"',
    )
    if record is None and create:
        record = await db_client.create_record(
            collection="users",
            data={
                "username": username,
                "email": email or f"{username}@example.com",
                "display_name": username,
                "created_at": datetime.now(UTC),
            },
        )
        logger.info(f"Created user {username} ({record['id']})")
    return User.model_validate(record) if record else None


def print_usage() -> None:
    """Print usage information."""
    logger.info(__doc__)


async def main() -> None:
    """Main entry point."""
    args = sys.argv[1:]

    if not args or "--help" in args or "-h" in args:
        print_usage()
        return

    username = args[0]
    email = None
    if "--email" in args:
        email_index = args.index("--email")
        if email_index + 1 >= len(args):
            print_usage()
            sys.exit(1)
        email = args[email_index + 1]

    await db_client.init_db()
    try:
        user = await find_or_create_user(username, create="--create" in args, email=email)
    finally:
        await db_client.close_connection()

    if user is None:
        logger.error(f"No user named {username}; pass --create to add one")
        sys.exit(1)

    logger.info(issue_token(user.to_identity()))


if __name__ == "__main__":
    asyncio.run(main())
