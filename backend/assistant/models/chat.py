"""Chat API models."""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

PERMISSION_DENIED = "permission_denied"


class ChatRequest(BaseModel):
    """Request body for POST /chat."""

    message: str = Field(..., min_length=1, max_length=20000)
    group_id: UUID


class ChatResponse(BaseModel):
    """Single response object returned for every chat message."""

    response_text: str
    is_command: bool = False
    requires_permission: Literal["permission_denied"] | None = None
