"""Auth dependency - caller identity from the bearer token.

Token verification happens upstream at the identity provider; the bearer
token carries the verified user id.
"""

import uuid
from typing import Annotated

from fastapi import Header, HTTPException, status

from backend.assistant.db.context import RequestContext


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_context(
    authorization: Annotated[str | None, Header()] = None,
    x_request_id: Annotated[str | None, Header()] = None,
) -> RequestContext:
    """Extract request context from authorization header.

    Args:
        authorization: Authorization header ("Bearer <user_id>")
        x_request_id: Optional caller-supplied request ID for log correlation

    Returns:
        RequestContext with user_id

    Raises:
        HTTPException: 401 if the header is missing or malformed
    """
    if not authorization:
        raise _unauthorized("Missing authorization header")

    if not authorization.startswith("Bearer "):
        raise _unauthorized("Invalid authorization header format")

    token = authorization[7:].strip()  # Strip "Bearer "

    try:
        user_id = uuid.UUID(token)
    except ValueError as e:
        raise _unauthorized("Invalid bearer token (expected user id)") from e

    if x_request_id:
        return RequestContext(user_id=user_id, request_id=x_request_id)
    return RequestContext(user_id=user_id)
