"""Models package - re-exports for convenience."""

from backend.assistant.models.chat import PERMISSION_DENIED, ChatRequest, ChatResponse
from backend.assistant.models.commands import (
    COMMAND_TYPES,
    CommandOutcome,
    ParsedReply,
    TaskAssignmentCommand,
)
from backend.assistant.models.context import (
    AttachmentRef,
    ChatTurn,
    ContextPayload,
    ConversationTurn,
    OpenItem,
    PermissionSet,
    TextSnippet,
)
from backend.assistant.models.docs import (
    BlobContent,
    DocumentCandidate,
    DocumentMetadata,
    DocumentRef,
)
from backend.assistant.models.intent import IntentKind, MessageIntent

__all__ = [
    # Chat
    "ChatRequest",
    "ChatResponse",
    "PERMISSION_DENIED",
    # Commands
    "COMMAND_TYPES",
    "CommandOutcome",
    "ParsedReply",
    "TaskAssignmentCommand",
    # Context
    "AttachmentRef",
    "ChatTurn",
    "ContextPayload",
    "ConversationTurn",
    "OpenItem",
    "PermissionSet",
    "TextSnippet",
    # Docs
    "BlobContent",
    "DocumentCandidate",
    "DocumentMetadata",
    "DocumentRef",
    # Intent
    "IntentKind",
    "MessageIntent",
]
