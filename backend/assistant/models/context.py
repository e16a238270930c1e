"""Context models - request-scoped payload handed to the language model."""

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from backend.assistant.models.docs import DocumentMetadata

TurnRole = Literal["user", "assistant"]
TaskStatus = Literal["pending", "in_progress", "completed", "cancelled"]
TaskPriority = Literal["low", "medium", "high"]


class PermissionSet(BaseModel):
    """Two-tier authorization value.

    `enumerated` and `group_permissions` are machine-checkable grants.
    `override` is free text shown to the model with higher priority; it is
    never consulted by hard authorization checks.
    """

    role: str
    group_role: str | None = None
    enumerated: set[str] = Field(default_factory=set)
    group_permissions: set[str] = Field(default_factory=set)
    override: str | None = None

    def grants(self, permission: str) -> bool:
        return permission in self.enumerated or permission in self.group_permissions


class ChatTurn(BaseModel):
    """One persisted chat message."""

    group_id: UUID
    user_id: UUID
    role: TurnRole
    content: str
    created_at: datetime
    metadata: dict[str, object] | None = None


class ConversationTurn(BaseModel):
    """Minimal turn shape injected into the model context."""

    role: TurnRole
    content: str


class OpenItem(BaseModel):
    """Open work item summary."""

    title: str
    due_date: date | None = None
    group_name: str
    status: TaskStatus


class TextSnippet(BaseModel):
    """Labeled text injected into the model context."""

    label: str
    text: str


class AttachmentRef(BaseModel):
    """Handle to a file the model service consumes directly."""

    label: str
    remote_handle: str
    media_type: str


class ContextPayload(BaseModel):
    """Bounded structured context for one model call. Never persisted."""

    group_id: UUID
    group_name: str
    permissions: PermissionSet
    recent_turns: list[ConversationTurn] = Field(
        default_factory=list, description="Chronological, oldest first"
    )
    open_items: list[OpenItem] = Field(default_factory=list)
    document_metadata: list[DocumentMetadata] = Field(default_factory=list)
    text_snippets: list[TextSnippet] = Field(default_factory=list)
    attachment_refs: list[AttachmentRef] = Field(default_factory=list)

    def injected_text_bytes(self) -> int:
        """Total UTF-8 size of document text injected into the context."""
        return sum(len(s.text.encode("utf-8")) for s in self.text_snippets)

