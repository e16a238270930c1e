"""Response parser - interprets reserved prefixes in model replies."""

import json
import logging
from uuid import UUID

from pydantic import ValidationError

from backend.assistant.models.commands import COMMAND_TYPES, ParsedReply

logger = logging.getLogger(__name__)

COMMAND_PREFIX = "COMMAND:"
PERMISSION_DENIED_PREFIX = "PERMISSION_DENIED:"


def parse_reply(raw: str, group_id: UUID) -> ParsedReply:
    """Parse a raw model reply.

    Never raises: a malformed command degrades to a plain reply carrying the
    trimmed original text.

    Args:
        raw: Raw reply text from the model
        group_id: Request group; commands always execute in this group

    Returns:
        ParsedReply describing a plain reply, a command, or a permission denial
    """
    text = raw.strip()

    if text.startswith(COMMAND_PREFIX):
        payload = text[len(COMMAND_PREFIX) :].strip()
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning(f"Command payload is not valid JSON: {e}")
            return ParsedReply(response_text=text)

        if not isinstance(data, dict):
            logger.warning(f"Command payload is not an object: {type(data).__name__}")
            return ParsedReply(response_text=text)

        command_type = data.get("type")
        model = COMMAND_TYPES.get(command_type) if isinstance(command_type, str) else None
        if model is None:
            logger.warning(f"Unknown command type: {command_type!r}")
            return ParsedReply(response_text=text)

        try:
            command = model.model_validate({**data, "groupId": group_id})
        except ValidationError as e:
            logger.warning(f"Command payload failed validation: {e.error_count()} error(s)")
            return ParsedReply(response_text=text)

        return ParsedReply(
            response_text=f'I\'ll assign the task "{command.title}" to the specified users.',
            is_command=True,
            command=command,
        )

    if text.startswith(PERMISSION_DENIED_PREFIX):
        explanation = text[len(PERMISSION_DENIED_PREFIX) :].strip()
        return ParsedReply(
            response_text=explanation or "You don't have permission to do that.",
            permission_denied=True,
        )

    return ParsedReply(response_text=text)
