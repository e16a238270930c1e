"""Context assembler - builds the bounded context payload for one model call.

A resolved document gets exactly one representation, chosen by trying an
ordered list of strategies until one produces a fragment:

1. AttachmentStrategy - upload the blob so the model reads it directly
2. TextStrategy - extracted text as one snippet, or per-chunk summaries
3. PlaceholderStrategy - fixed "no readable text" snippet (always succeeds)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID

from backend.assistant.blob.store import BlobNotFoundError, BlobStore
from backend.assistant.config import Settings
from backend.assistant.db.repositories import GroupRecord, Stores
from backend.assistant.docs.chunker import chunk_text, truncation_applied
from backend.assistant.docs.extractor import extract_text
from backend.assistant.docs.summarizer import NO_TEXT_PLACEHOLDER, SummarizerFallback
from backend.assistant.external.executor import (
    CallConfig,
    CallContext,
    ExternalCallError,
    ExternalCallExecutor,
)
from backend.assistant.llm.client import AttachmentUnavailableError, LLMClient
from backend.assistant.models.context import (
    AttachmentRef,
    ContextPayload,
    ConversationTurn,
    OpenItem,
    PermissionSet,
    TextSnippet,
)
from backend.assistant.models.docs import BlobContent, DocumentCandidate, DocumentMetadata
from backend.assistant.utils.metrics import context_fragments_total

logger = logging.getLogger(__name__)


@dataclass
class ResolvedDocument:
    """A resolver candidate with its content, when it could be fetched."""

    candidate: DocumentCandidate
    blob: BlobContent | None = None

    @property
    def media_type(self) -> str | None:
        """Declared media type first, then whatever the blob store reported."""
        if self.candidate.media_type:
            return self.candidate.media_type
        return self.blob.media_type if self.blob else None


@dataclass
class Fragment:
    """One document's representation in the context payload."""

    representation: str
    snippets: list[TextSnippet] = field(default_factory=list)
    attachments: list[AttachmentRef] = field(default_factory=list)


@dataclass(frozen=True)
class AssemblyContext:
    """Request-scoped identifiers passed to strategies."""

    request_id: str
    group_id: UUID

    def call(self, call_name: str) -> CallContext:
        return CallContext(
            request_id=self.request_id, group_id=str(self.group_id), call_name=call_name
        )


class FragmentStrategy(Protocol):
    """One way of representing a resolved document."""

    name: str

    async def build(self, doc: ResolvedDocument, actx: AssemblyContext) -> Fragment | None:
        """Produce a fragment, or None to defer to the next strategy."""
        ...


class AttachmentStrategy:
    """Upload the blob to the model service and reference it by handle."""

    name = "attachment"

    def __init__(self, llm: LLMClient, executor: ExternalCallExecutor, settings: Settings) -> None:
        self._llm = llm
        self._executor = executor
        self._enabled = settings.enable_attachments
        self._media_types = set(settings.attachment_media_types)
        self._config = CallConfig.from_settings(
            settings,
            timeout_ms=settings.upload_timeout_ms,
            passthrough=(AttachmentUnavailableError,),
        )

    async def build(self, doc: ResolvedDocument, actx: AssemblyContext) -> Fragment | None:
        media_type = doc.media_type
        if not self._enabled or doc.blob is None or media_type not in self._media_types:
            return None

        blob = doc.blob
        title = doc.candidate.title
        try:
            handle = await self._executor.run(
                actx.call("llm.upload_attachment"),
                self._config,
                lambda: self._llm.upload_attachment(
                    blob.data, media_type=media_type, display_name=title
                ),
            )
        except AttachmentUnavailableError as e:
            logger.info(f"Attachment unavailable for {title}: {e}")
            return None
        except ExternalCallError as e:
            logger.warning(f"Attachment upload failed for {title}: {e}")
            return None

        return Fragment(
            representation=self.name,
            attachments=[AttachmentRef(label=title, remote_handle=handle, media_type=media_type)],
        )


class TextStrategy:
    """Inject extracted text, summarizing per chunk when it spans several chunks."""

    name = "text"

    def __init__(
        self,
        executor: ExternalCallExecutor,
        summarizer: SummarizerFallback,
        settings: Settings,
    ) -> None:
        self._executor = executor
        self._summarizer = summarizer
        self._max_bytes = settings.chunk_max_bytes
        self._max_chunks = settings.chunk_max_count
        self._max_sheets = settings.spreadsheet_max_sheets
        self._config = CallConfig.from_settings(settings, timeout_ms=settings.extraction_timeout_ms)

    async def _extract(self, doc: ResolvedDocument, actx: AssemblyContext) -> str | None:
        if doc.candidate.is_inline:
            return doc.candidate.inline_text
        if doc.blob is None:
            return None

        blob = doc.blob
        try:
            return await self._executor.run(
                actx.call("extract"),
                self._config,
                lambda: asyncio.to_thread(
                    extract_text,
                    blob.data,
                    doc.media_type,
                    doc.candidate.title,
                    max_sheets=self._max_sheets,
                ),
            )
        except ExternalCallError as e:
            logger.warning(f"Extraction failed for {doc.candidate.title}: {e}")
            return None

    def _cap(self, text: str) -> str:
        capped = chunk_text(text, max_bytes=self._max_bytes, max_chunks=1)
        return capped[0] if capped else ""

    async def build(self, doc: ResolvedDocument, actx: AssemblyContext) -> Fragment | None:
        text = await self._extract(doc, actx)
        if text is None or not text.strip():
            return None

        title = doc.candidate.title
        chunks = chunk_text(text, max_bytes=self._max_bytes, max_chunks=self._max_chunks)
        if truncation_applied(text, chunks):
            logger.info(f"Text of {title} exceeds {len(chunks)} chunks, dropping the remainder")

        # Blank chunks carry nothing to summarize
        chunks = [c for c in chunks if c.strip()]
        if not chunks:
            return None
        if len(chunks) == 1:
            return Fragment(
                representation=self.name, snippets=[TextSnippet(label=title, text=chunks[0])]
            )

        snippets = []
        for i, chunk in enumerate(chunks, start=1):
            label = f"{title} [{i}/{len(chunks)}]"
            summary = await self._summarizer.summarize(
                chunk, label, request_id=actx.request_id, group_id=str(actx.group_id)
            )
            snippets.append(TextSnippet(label=label, text=self._cap(summary)))
        return Fragment(representation="summary", snippets=snippets)


def placeholder_fragment(title: str) -> Fragment:
    return Fragment(
        representation="placeholder",
        snippets=[TextSnippet(label=title, text=NO_TEXT_PLACEHOLDER)],
    )


class PlaceholderStrategy:
    """Fixed snippet stating that no text could be read."""

    name = "placeholder"

    async def build(self, doc: ResolvedDocument, actx: AssemblyContext) -> Fragment | None:
        return placeholder_fragment(doc.candidate.title)


class ContextAssembler:
    """Merges group-scoped state and resolved document content into a ContextPayload."""

    def __init__(
        self,
        stores: Stores,
        llm: LLMClient,
        blob_store: BlobStore,
        executor: ExternalCallExecutor,
        settings: Settings,
        strategies: list[FragmentStrategy] | None = None,
    ) -> None:
        self._stores = stores
        self._blob_store = blob_store
        self._executor = executor
        self._settings = settings
        self._blob_config = CallConfig.from_settings(
            settings,
            timeout_ms=settings.blob_timeout_ms,
            retry_count=settings.blob_retry_count,
            passthrough=(BlobNotFoundError,),
        )
        if strategies is None:
            summarizer = SummarizerFallback(llm, executor, settings)
            strategies = [
                AttachmentStrategy(llm, executor, settings),
                TextStrategy(executor, summarizer, settings),
                PlaceholderStrategy(),
            ]
        self._strategies = strategies

    async def assemble(
        self,
        *,
        request_id: str,
        group: GroupRecord,
        user_id: UUID,
        permissions: PermissionSet,
        see_all_open_items: bool,
        document: DocumentCandidate | None = None,
    ) -> ContextPayload:
        """Build the context payload for one model call.

        Args:
            request_id: Request ID for logs
            group: Group scope
            user_id: Caller
            permissions: Caller's permission set
            see_all_open_items: List every open item in the group rather than
                only the caller's own
            document: First resolver candidate, if any

        Returns:
            ContextPayload with at most one document representation
        """
        settings = self._settings
        group_id = group.group_id

        turns = await self._stores.chats.recent_turns(group_id, settings.recent_turns_limit)
        recent_turns = [ConversationTurn(role=t.role, content=t.content) for t in reversed(turns)]

        tasks = await self._stores.tasks.list_open(
            group_id,
            settings.open_items_limit,
            assignee_id=None if see_all_open_items else user_id,
        )
        open_items = [
            OpenItem(
                title=t.title, due_date=t.due_date, group_name=t.group_name, status=t.status
            )
            for t in tasks
        ]

        docs = await self._stores.documents.list_recent(
            group_id, settings.document_metadata_limit
        )
        metadata = [
            DocumentMetadata(title=d.title, media_type=d.media_type, uploaded_at=d.uploaded_at)
            for d in docs
        ]

        payload = ContextPayload(
            group_id=group_id,
            group_name=group.name,
            permissions=permissions,
            recent_turns=recent_turns,
            open_items=open_items,
            document_metadata=metadata,
        )

        if document is not None:
            actx = AssemblyContext(request_id=request_id, group_id=group_id)
            fragment = await self.represent(document, actx)
            payload.text_snippets.extend(fragment.snippets)
            payload.attachment_refs.extend(fragment.attachments)
            logger.info(
                f"Request {request_id}: {document.title} as {fragment.representation}, "
                f"{payload.injected_text_bytes()} bytes of document text"
            )

        return payload

    async def represent(self, document: DocumentCandidate, actx: AssemblyContext) -> Fragment:
        """Choose exactly one representation for a resolved document."""
        resolved = ResolvedDocument(candidate=document)
        if not document.is_inline and document.storage_locator:
            resolved.blob = await self._download(document.storage_locator, actx)

        for strategy in self._strategies:
            fragment = await strategy.build(resolved, actx)
            if fragment is not None:
                context_fragments_total.labels(representation=fragment.representation).inc()
                return fragment

        fragment = placeholder_fragment(document.title)
        context_fragments_total.labels(representation=fragment.representation).inc()
        return fragment

    async def _download(self, locator: str, actx: AssemblyContext) -> BlobContent | None:
        try:
            return await self._executor.run(
                actx.call("blob.download"),
                self._blob_config,
                lambda: self._blob_store.download(locator),
            )
        except BlobNotFoundError:
            logger.warning(f"Blob not found for locator {locator}")
            return None
        except ExternalCallError as e:
            logger.warning(f"Blob download failed for {locator}: {e}")
            return None
