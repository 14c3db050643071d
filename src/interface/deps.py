"""Shared request plumbing: authentication and the response envelope."""

from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from starlette.requests import HTTPConnection

from src.domain.user import Identity
from src.services import auth_service


TOKEN_COOKIE = "token"


def extract_token(connection: HTTPConnection, *, allow_query: bool = False) -> str | None:
    """Find a bearer token in the Authorization header, the cookie or (sockets only) the query."""
    if allow_query:
        token = connection.query_params.get("token")
        if token:
            return token

    authorization = connection.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()

    return connection.cookies.get(TOKEN_COOKIE)


async def get_current_user(request: Request) -> Identity:
    """FastAPI dependency resolving the caller's identity.

    Raises:
        UnauthenticatedError: If no valid token is presented
    """
    identity = await auth_service.verify_token(extract_token(request))
    request.state.user = identity
    return identity


def ok(data: Any) -> dict[str, Any]:  # noqa: ANN401
    """Wrap a payload in the success envelope, camelCasing model fields."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json", by_alias=True)
    elif isinstance(data, list):
        data = [item.model_dump(mode="json", by_alias=True) if isinstance(item, BaseModel) else item for item in data]
    return {"success": True, "data": jsonable_encoder(data)}
