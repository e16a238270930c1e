"""Chat pipeline - request-scoped orchestration of one chat message.

Flow:
1. Intent detection over the raw message
2. Group and membership checks
3. ListFiles short-circuit (no model call)
4. Permission lookup and document resolution
5. Context assembly (attachment / text / summary / placeholder)
6. Model call, reply parsing, command execution
7. Best-effort logging of both turns
"""

import logging
from datetime import datetime
from uuid import UUID

from backend.assistant.blob.store import BlobStore
from backend.assistant.chat.command_executor import CommandExecutor
from backend.assistant.chat.context_assembler import ContextAssembler
from backend.assistant.chat.intent_router import detect_intent
from backend.assistant.chat.response_parser import parse_reply
from backend.assistant.config import Settings
from backend.assistant.db.context import RequestContext
from backend.assistant.db.repositories import GroupRecord, Stores
from backend.assistant.docs.resolver import list_documents, normalize_candidate, resolve_documents
from backend.assistant.external.executor import (
    CallConfig,
    CallContext,
    ExternalCallError,
    ExternalCallExecutor,
)
from backend.assistant.llm.client import LLMClient
from backend.assistant.models.chat import PERMISSION_DENIED, ChatResponse
from backend.assistant.models.context import ChatTurn, ContextPayload
from backend.assistant.models.docs import DocumentCandidate, DocumentRef
from backend.assistant.models.intent import IntentKind, MessageIntent
from backend.assistant.rbac import RBACService
from backend.assistant.utils.metrics import chat_intents_total

logger = logging.getLogger(__name__)

MODEL_UNAVAILABLE_REPLY = (
    "I'm sorry, I'm having trouble connecting to the AI service. Please try again later."
)
GROUP_NOT_FOUND_REPLY = "I couldn't find that group. It may have been deleted."
NOT_A_MEMBER_REPLY = "You are not a member of this group, so I can't help with it here."
NO_FILES_REPLY = "No files have been uploaded to this group yet."


def format_file_listing(group_name: str, docs: list[DocumentRef]) -> str:
    """Numbered listing of documents, as returned to the user."""
    if not docs:
        return NO_FILES_REPLY
    lines = [f"Here are the files in {group_name}:"]
    for i, doc in enumerate(docs, start=1):
        uploaded = doc.uploaded_at.date().isoformat()
        lines.append(f"{i}. {doc.title} ({doc.media_type or 'file'}, uploaded {uploaded})")
    return "\n".join(lines)


def file_not_found_reply(name: str, group_name: str) -> str:
    return (
        f'I couldn\'t find a file named "{name}" in {group_name}. '
        'Ask me to "list files" to see what has been uploaded.'
    )


class ChatPipeline:
    """Handles one chat message end to end."""

    def __init__(
        self,
        stores: Stores,
        llm: LLMClient,
        blob_store: BlobStore,
        settings: Settings,
        executor: ExternalCallExecutor | None = None,
    ) -> None:
        """Initialize pipeline.

        Args:
            stores: Repositories for this request
            llm: Language model client
            blob_store: Blob store for document downloads
            settings: Application settings
            executor: External call executor (optional, defaults to no-op metrics)
        """
        self._stores = stores
        self._llm = llm
        self._settings = settings
        self._executor = executor or ExternalCallExecutor()
        self._rbac = RBACService(stores, settings)
        self._assembler = ContextAssembler(stores, llm, blob_store, self._executor, settings)
        self._commands = CommandExecutor(stores, self._rbac)
        self._model_config = CallConfig.from_settings(
            settings, timeout_ms=settings.model_timeout_ms
        )

    async def handle(self, message: str, group_id: UUID, ctx: RequestContext) -> ChatResponse:
        """Answer one chat message.

        Args:
            message: Raw user message
            group_id: Group scope
            ctx: Caller identity

        Returns:
            ChatResponse; authorization and upstream failures are expressed in
            the reply rather than raised
        """
        intent = detect_intent(message)
        chat_intents_total.labels(intent=intent.kind.value).inc()

        group = await self._stores.groups.get_group(group_id)
        if group is None:
            return ChatResponse(response_text=GROUP_NOT_FOUND_REPLY)

        membership = await self._stores.groups.get_membership(group_id, ctx.user_id)
        if membership is None:
            logger.info(f"User {ctx.user_id} is not a member of group {group_id}")
            return ChatResponse(
                response_text=NOT_A_MEMBER_REPLY, requires_permission=PERMISSION_DENIED
            )

        if intent.kind == IntentKind.list_files:
            docs = await list_documents(
                self._stores.documents, group_id, limit=self._settings.file_listing_limit
            )
            response = ChatResponse(response_text=format_file_listing(group.name, docs))
            await self._log_turns(message, response, group_id, ctx, intent)
            return response

        permissions = await self._rbac.get_permissions(ctx.user_id, group_id)

        document: DocumentCandidate | None = None
        if intent.references_file and intent.file_name:
            candidates = await resolve_documents(
                self._stores.documents,
                group_id,
                intent.file_name,
                limit=self._settings.resolver_candidate_limit,
            )
            if candidates:
                document = candidates[0]
            elif intent.kind == IntentKind.explicit_file:
                name = normalize_candidate(intent.file_name)
                response = ChatResponse(response_text=file_not_found_reply(name, group.name))
                await self._log_turns(message, response, group_id, ctx, intent)
                return response
            else:
                logger.info(f"Implicit file reference {intent.file_name!r} matched nothing")

        payload = await self._assembler.assemble(
            request_id=ctx.request_id,
            group=group,
            user_id=ctx.user_id,
            permissions=permissions,
            see_all_open_items=self._rbac.is_elevated(permissions),
            document=document,
        )

        raw = await self._generate(message, payload, ctx, group)
        if raw is None:
            response = ChatResponse(response_text=MODEL_UNAVAILABLE_REPLY)
            await self._log_turns(message, response, group_id, ctx, intent)
            return response

        parsed = parse_reply(raw, group_id)

        if parsed.is_command and parsed.command is not None:
            outcome = await self._commands.execute(
                parsed.command,
                caller_id=ctx.user_id,
                group_id=group_id,
                permissions=permissions,
            )
            response = ChatResponse(
                response_text=outcome.response_text,
                is_command=not outcome.permission_denied,
                requires_permission=PERMISSION_DENIED if outcome.permission_denied else None,
            )
        elif parsed.permission_denied:
            response = ChatResponse(
                response_text=parsed.response_text, requires_permission=PERMISSION_DENIED
            )
        else:
            response = ChatResponse(response_text=parsed.response_text)

        await self._log_turns(message, response, group_id, ctx, intent)
        return response

    async def _generate(
        self, message: str, payload: ContextPayload, ctx: RequestContext, group: GroupRecord
    ) -> str | None:
        call_ctx = CallContext(
            request_id=ctx.request_id, group_id=str(group.group_id), call_name="llm.generate_reply"
        )
        try:
            raw = await self._executor.run(
                call_ctx,
                self._model_config,
                lambda: self._llm.generate_reply(message=message, context=payload),
            )
        except ExternalCallError as e:
            logger.error(f"Model call failed for request {ctx.request_id}: {e}")
            return None

        if not raw or not raw.strip():
            logger.warning(f"Model returned an empty reply for request {ctx.request_id}")
            return None
        return raw

    async def _log_turns(
        self,
        message: str,
        response: ChatResponse,
        group_id: UUID,
        ctx: RequestContext,
        intent: MessageIntent,
    ) -> None:
        """Append the user and assistant turns; failures are logged and swallowed."""
        now = datetime.now()
        turns = [
            ChatTurn(
                group_id=group_id,
                user_id=ctx.user_id,
                role="user",
                content=message,
                created_at=now,
                metadata={"intent": intent.kind.value},
            ),
            ChatTurn(
                group_id=group_id,
                user_id=ctx.user_id,
                role="assistant",
                content=response.response_text,
                created_at=datetime.now(),
                metadata={
                    "is_command": response.is_command,
                    "requires_permission": response.requires_permission,
                },
            ),
        ]
        try:
            for turn in turns:
                await self._stores.chats.append(turn)
        except Exception as e:
            logger.warning(f"Failed to log chat turns for request {ctx.request_id}: {e}")
