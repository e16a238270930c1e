"""LLM client for chat replies, summaries and file attachments.

Security: Reads API key from environment only, never hardcoded.
Provides deterministic fallback when no key present for testing.
"""

import logging
from typing import Any, Protocol

from openai import AsyncOpenAI, OpenAIError

from backend.assistant.config import get_settings
from backend.assistant.models.context import ContextPayload

logger = logging.getLogger(__name__)


class LLMServiceError(Exception):
    """The language model service failed or returned nothing usable."""

    pass


class AttachmentUnavailableError(Exception):
    """Direct file attachment is not available for this client or media type."""

    pass


class LLMClient(Protocol):
    """Protocol for LLM client implementations."""

    async def generate_reply(self, *, message: str, context: ContextPayload) -> str:
        """Generate the assistant's raw reply to a chat message.

        Args:
            message: The user's message
            context: Group-scoped context assembled for this request

        Returns:
            Raw reply text, possibly starting with a reserved prefix

        Raises:
            LLMServiceError: If the service fails
        """
        ...

    async def summarize(self, text: str, *, title: str) -> str:
        """Summarize extracted document text.

        Args:
            text: Extracted text (callers truncate to the summary input cap)
            title: Document title used in the prompt

        Returns:
            Summary text (may be empty)

        Raises:
            LLMServiceError: If the service fails
        """
        ...

    async def upload_attachment(self, data: bytes, *, media_type: str, display_name: str) -> str:
        """Upload a file for direct consumption by the model.

        Returns:
            Remote handle to reference the file in a later reply request

        Raises:
            AttachmentUnavailableError: If attachments are unsupported
            LLMServiceError: If the upload fails
        """
        ...


def build_system_prompt(context: ContextPayload) -> str:
    """Build the system prompt carrying the group-scoped context."""
    perms = context.permissions
    lines = [
        "You are an AI assistant for a team workspace. You help users with their work "
        "tasks while respecting their role-based permissions.",
        "",
        "USER CONTEXT:",
        f"- Current Group: {context.group_name}",
        f"- User Role: {perms.role}",
        f"- User Permissions: {', '.join(sorted(perms.enumerated)) or 'none'}",
    ]
    if perms.group_role:
        lines.append(f"- Group Role: {perms.group_role}")
    if perms.group_permissions:
        lines.append(f"- Group-Specific Permissions: {', '.join(sorted(perms.group_permissions))}")

    if perms.override:
        lines += [
            "",
            "HIGH PRIORITY - CUSTOM GROUP PERMISSIONS (OVERRIDE OTHER RESTRICTIONS):",
            perms.override,
        ]

    lines += [
        "",
        "PERMISSION RULES:",
        "- Only provide information or perform actions that the user's permissions allow",
        "- If a user requests something they don't have permission for, explain what "
        "permission they need",
        "- Custom group permissions (if provided above) take priority over standard rules",
        "",
        "RESPONSE FORMAT:",
        "- For regular chat: respond naturally",
        '- For commands: start with "COMMAND:" followed by a single JSON object',
        '- For permission denials: start with "PERMISSION_DENIED:" followed by an explanation',
        "- When FILE CONTEXT or an attached file is provided, answer directly from it and "
        "cite the file name; do not claim you cannot access the file",
        "",
        "TASK ASSIGNMENT:",
        "When the user asks to assign, schedule or delegate work, respond with:",
        'COMMAND: {"type": "task_assignment", "title": "<task>", '
        '"description": "<details>", "assignedTo": ["<email or handle>"], '
        '"assignToAllMembers": false, "assignToRole": "<role or null>", '
        '"dueDate": "<YYYY-MM-DD or null>", "priority": "low|medium|high", '
        f'"groupId": "{context.group_id}"}}',
        '- Use "assignToAllMembers": true when the whole group is addressed',
        "- Default priority to medium and description to \"Task assigned via chat\"",
    ]

    if context.open_items:
        lines += ["", "TASKS SNAPSHOT (for context):"]
        for item in context.open_items:
            due = f" due {item.due_date.isoformat()}" if item.due_date else ""
            lines.append(f"- [{item.status}] {item.title} ({item.group_name}){due}")

    if context.document_metadata:
        lines += ["", "GROUP FILES SNAPSHOT (for context):"]
        for doc in context.document_metadata:
            lines.append(
                f"- {doc.title} ({doc.media_type or 'file'}) "
                f"uploaded {doc.uploaded_at.date().isoformat()}"
            )

    if context.text_snippets:
        lines += ["", "FILE CONTEXT:"]
        for snippet in context.text_snippets:
            lines += ["---", f"FILE: {snippet.label}", "CONTENT:", snippet.text]

    if context.attachment_refs:
        lines += ["", "ATTACHED FILES:"]
        lines += [f"- {ref.label} ({ref.media_type})" for ref in context.attachment_refs]

    return "\n".join(lines)


def build_summary_prompt(text: str, title: str) -> str:
    """Build the summarization prompt around already size-capped text."""
    return (
        f'You are given a document titled "{title}". Produce a concise summary capturing:\n'
        "- Key objectives, decisions, deadlines, owners, figures, and dates\n"
        "- Any risks, blockers, and next steps\n"
        "- Keep it under 15 bullet points total\n"
        "Use plain text with bullets (- ). If content appears tabular, flatten key cells.\n\n"
        f"DOCUMENT:\n{text}"
    )


class DeterministicStubClient:
    """Deterministic stub client for testing (no API key required)."""

    async def generate_reply(self, *, message: str, context: ContextPayload) -> str:
        """Generate deterministic stub reply."""
        if context.text_snippets:
            snippet = context.text_snippets[0]
            preview = snippet.text[:500]
            return f"Here is what I found in {snippet.label}:\n\n{preview}"
        return (
            f"You said: {message}\n\n"
            f"*This is a stub response for {context.group_name} generated without a model.*"
        )

    async def summarize(self, text: str, *, title: str) -> str:
        """First non-blank lines of the text, as bullets."""
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        return "\n".join(f"- {line[:200]}" for line in lines[:10])

    async def upload_attachment(self, data: bytes, *, media_type: str, display_name: str) -> str:
        raise AttachmentUnavailableError("stub client does not accept attachments")


class OpenAIClient:
    """OpenAI-backed LLM client."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        summary_model: str | None = None,
        attachment_media_types: list[str] | None = None,
        client: AsyncOpenAI | None = None,
    ):
        """Initialize OpenAI client.

        Args:
            api_key: OpenAI API key (read from environment)
            model: Model name for chat replies
            summary_model: Model name for summaries (defaults to `model`)
            attachment_media_types: Media types accepted as file inputs
            client: Preconfigured SDK client (tests)
        """
        self.client = client or AsyncOpenAI(api_key=api_key)
        self.model = model
        self.summary_model = summary_model or model
        self.attachment_media_types = attachment_media_types or ["application/pdf"]

    async def generate_reply(self, *, message: str, context: ContextPayload) -> str:
        """Generate reply using OpenAI API."""
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": build_system_prompt(context)}
        ]
        messages += [{"role": t.role, "content": t.content} for t in context.recent_turns]
        messages.append({"role": "user", "content": self._user_content(message, context)})

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,  # type: ignore[arg-type]
                temperature=0.7,
                max_tokens=2000,
            )
        except OpenAIError as e:
            logger.error(f"OpenAI API call failed: {e}")
            raise LLMServiceError(str(e)) from e

        reply = response.choices[0].message.content or ""
        if not reply.strip():
            raise LLMServiceError("OpenAI returned empty response")
        return reply

    def _user_content(self, message: str, context: ContextPayload) -> str | list[dict[str, Any]]:
        if not context.attachment_refs:
            return message
        parts: list[dict[str, Any]] = [
            {"type": "file", "file": {"file_id": ref.remote_handle}}
            for ref in context.attachment_refs
        ]
        parts.append({"type": "text", "text": message})
        return parts

    async def summarize(self, text: str, *, title: str) -> str:
        """Summarize text using OpenAI API."""
        try:
            response = await self.client.chat.completions.create(
                model=self.summary_model,
                messages=[{"role": "user", "content": build_summary_prompt(text, title)}],
                temperature=0.2,
                max_tokens=1200,
            )
        except OpenAIError as e:
            logger.error(f"OpenAI summary call failed for {title}: {e}")
            raise LLMServiceError(str(e)) from e

        return (response.choices[0].message.content or "").strip()

    async def upload_attachment(self, data: bytes, *, media_type: str, display_name: str) -> str:
        """Upload a file through the Files API and return its id."""
        if media_type not in self.attachment_media_types:
            raise AttachmentUnavailableError(f"{media_type} is not accepted as a file input")

        try:
            uploaded = await self.client.files.create(
                file=(display_name, data, media_type), purpose="user_data"
            )
        except OpenAIError as e:
            logger.error(f"OpenAI file upload failed for {display_name}: {e}")
            raise LLMServiceError(str(e)) from e

        if not uploaded.id:
            raise LLMServiceError(f"Upload of {display_name} returned no file id")
        return uploaded.id


async def get_llm_client() -> LLMClient:
    """Factory function to get appropriate LLM client based on config.

    Returns:
        OpenAIClient if API key is configured, DeterministicStubClient otherwise
    """
    settings = get_settings()
    api_key = settings.openai_api_key

    if api_key and api_key.get_secret_value():
        logger.info("Using OpenAI client for chat")
        return OpenAIClient(
            api_key=api_key.get_secret_value(),
            model=settings.openai_model,
            summary_model=settings.openai_summary_model,
            attachment_media_types=settings.attachment_media_types,
        )
    else:
        logger.warning("No OpenAI API key configured, using deterministic stub client")
        return DeterministicStubClient()
