"""Intent router - pattern-based classification of chat messages.

Precedence: explicit `file:` reference > implicit file reference > file
listing request. The assignment hint is independent of the primary kind and
only becomes the primary kind when nothing else matched.
"""

import re

from backend.assistant.models.intent import IntentKind, MessageIntent

DOCUMENT_EXTENSIONS = ("pdf", "docx", "doc", "xlsx", "xls", "csv", "txt", "md", "json")

# Double, single and typographic double quotes
_QUOTED = r"""(?:"(?P<dq>[^"]+)"|'(?P<sq>[^']+)'|“(?P<cq>[^”]+)”)"""

# Bare names keep dots, dashes and underscores; anything else ends the name
_BARE_NAME = r"(?P<bare>\w[\w.\-]*)"

_EXPLICIT = re.compile(rf"\bfile:\s*(?:{_QUOTED}|{_BARE_NAME})", re.IGNORECASE)

_READ_VERBS = r"(?:summari[sz]e|read|open|show|analy[sz]e|review)"

_IMPLICIT_QUOTED = re.compile(
    rf"\b{_READ_VERBS}\s+(?:me\s+)?(?:the\s+(?:file|document)\s+)?{_QUOTED}",
    re.IGNORECASE,
)

_EXTENSION_TOKEN = re.compile(
    rf"(?<![\w.\-])(?P<name>\w[\w.\-]*\.(?:{'|'.join(DOCUMENT_EXTENSIONS)}))(?![\w\-]|\.\w)",
    re.IGNORECASE,
)

_LIST_FILES = re.compile(
    r"\b(?:list|show|display|see)\s+(?:me\s+)?(?:all\s+)?(?:of\s+)?(?:the\s+|our\s+|my\s+)?"
    r"(?:uploaded\s+)?(?:files|documents|docs|uploads)\b"
    r"|\b(?:which|what)\s+(?:files|documents|docs)\b",
    re.IGNORECASE,
)

_ASSIGNMENT = re.compile(
    r"\b(?:assign|schedule|delegate)\w*\b|\bcreate\s+(?:a\s+|an\s+)?(?:new\s+)?task\b",
    re.IGNORECASE,
)


def _quoted_or_bare(match: re.Match[str]) -> str | None:
    for group in ("dq", "sq", "cq"):
        value = match.groupdict().get(group)
        if value is not None:
            return value.strip() or None
    bare = match.groupdict().get("bare")
    if bare is None:
        return None
    return bare.rstrip(".") or None


def explicit_file_name(message: str) -> str | None:
    """Name following the first `file:` marker, if any."""
    for match in _EXPLICIT.finditer(message):
        name = _quoted_or_bare(match)
        if name:
            return name
    return None


def implicit_file_name(message: str) -> str | None:
    """Quoted name after a read verb, else the first token with a document extension."""
    match = _IMPLICIT_QUOTED.search(message)
    if match:
        name = _quoted_or_bare(match)
        if name:
            return name

    match = _EXTENSION_TOKEN.search(message)
    if match:
        return match.group("name")
    return None


def detect_intent(message: str) -> MessageIntent:
    """Classify a raw chat message.

    Pure and deterministic: the same message always yields the same intent.

    Args:
        message: Raw user message

    Returns:
        MessageIntent with the primary kind, the referenced file name for
        file intents, and the advisory assignment flag
    """
    assignment_hint = bool(_ASSIGNMENT.search(message))

    name = explicit_file_name(message)
    if name:
        return MessageIntent(
            kind=IntentKind.explicit_file, file_name=name, assignment_hint=assignment_hint
        )

    name = implicit_file_name(message)
    if name:
        return MessageIntent(
            kind=IntentKind.implicit_file, file_name=name, assignment_hint=assignment_hint
        )

    if _LIST_FILES.search(message):
        return MessageIntent(kind=IntentKind.list_files, assignment_hint=assignment_hint)

    if assignment_hint:
        return MessageIntent(kind=IntentKind.assignment_hint, assignment_hint=True)

    return MessageIntent(kind=IntentKind.none)
