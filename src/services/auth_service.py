"""Signed bearer tokens carrying the user's identity."""

import logging

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from src.core.config import settings
from src.core.errors import NotFoundError, UnauthenticatedError
from src.domain.user import Identity
from src.services import user_service


logger = logging.getLogger(__name__)

_TOKEN_SALT = "questline-auth"


def _serializer() -> URLSafeTimedSerializer:
    secret = settings.require_credential("secret_key", "Token signing")
    return URLSafeTimedSerializer(secret, salt=_TOKEN_SALT)


def issue_token(identity: Identity) -> str:
    """Sign an identity into a bearer token."""
    return _serializer().dumps({"userId": identity.id, "email": identity.email, "username": identity.username})


def decode_token(token: str) -> Identity:
    """Verify the signature and age of a token without touching the database.

    Raises:
        UnauthenticatedError: If the token is tampered with, malformed or expired
    """
    try:
        payload = _serializer().loads(token, max_age=settings.token_max_age_seconds)
    except SignatureExpired as e:
        raise UnauthenticatedError("Token expired") from e
    except BadSignature as e:
        raise UnauthenticatedError("Invalid token") from e

    if not isinstance(payload, dict) or "userId" not in payload:
        raise UnauthenticatedError("Invalid token")
    return Identity(id=str(payload["userId"]), email=payload.get("email", ""), username=payload.get("username", ""))


async def verify_token(token: str | None) -> Identity:
    """Resolve a bearer token to the current identity of an existing user.

    Raises:
        UnauthenticatedError: If the token is missing or invalid, or the user no longer exists
    """
    if not token:
        raise UnauthenticatedError()

    claimed = decode_token(token)
    try:
        user = await user_service.get_user(user_id=claimed.id)
    except NotFoundError as e:
        logger.warning("Token for missing user", extra={"user_id": claimed.id})
        raise UnauthenticatedError("User not found") from e
    return user.to_identity()
