"""Document resolver - lexical lookup of group documents by title."""

import logging
from uuid import UUID

from backend.assistant.db.repositories import DocumentRepository
from backend.assistant.models.docs import DocumentCandidate, DocumentRef

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATE_LIMIT = 5
DEFAULT_LISTING_LIMIT = 50

_QUOTE_CHARS = "\"'“”‘’`"


def normalize_candidate(name: str) -> str:
    """Trim whitespace and surrounding quotes from a candidate name."""
    return name.strip().strip(_QUOTE_CHARS).strip()


def _to_candidate(doc: DocumentRef, *, inline: bool) -> DocumentCandidate:
    return DocumentCandidate(
        doc_id=doc.doc_id,
        title=doc.title,
        media_type=doc.media_type,
        storage_locator=None if inline else doc.storage_locator,
        inline_text=doc.inline_text if inline else None,
        uploaded_at=doc.uploaded_at,
    )


async def resolve_documents(
    documents: DocumentRepository,
    group_id: UUID,
    name: str,
    *,
    limit: int = DEFAULT_CANDIDATE_LIMIT,
) -> list[DocumentCandidate]:
    """Resolve a candidate name to ranked group documents.

    Inline-content documents are consulted first; the most recent one with
    non-empty text is returned alone. Otherwise stored documents whose title
    equals or contains the name are returned, exact matches first, then most
    recent first. Callers use the first candidate.

    Args:
        documents: Document repository
        group_id: Group scope
        name: Candidate name as detected in the message
        limit: Maximum number of stored-document candidates

    Returns:
        Ranked candidates; empty when nothing matches
    """
    candidate = normalize_candidate(name)
    if not candidate:
        return []

    for doc in await documents.find_inline(group_id, candidate):
        if doc.inline_text and doc.inline_text.strip():
            return [_to_candidate(doc, inline=True)]

    matches = await documents.search(group_id, candidate, limit)
    resolved = []
    for doc in matches:
        if not doc.storage_locator:
            logger.warning(f"Document {doc.doc_id} ({doc.title}) has no storage locator, skipping")
            continue
        resolved.append(_to_candidate(doc, inline=False))
    return resolved


async def list_documents(
    documents: DocumentRepository,
    group_id: UUID,
    *,
    limit: int = DEFAULT_LISTING_LIMIT,
) -> list[DocumentRef]:
    """Most recent documents in a group, newest first, at most `limit`."""
    return await documents.list_recent(group_id, limit)
