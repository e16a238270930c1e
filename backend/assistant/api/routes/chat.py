"""Chat endpoint - POST /chat."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.assistant.api.auth import get_current_context
from backend.assistant.blob.store import BlobStore, build_blob_store
from backend.assistant.chat.pipeline import ChatPipeline
from backend.assistant.config import Settings, get_settings
from backend.assistant.db.context import RequestContext
from backend.assistant.db.engine import get_session
from backend.assistant.db.repositories import Stores
from backend.assistant.db.sql_repositories import build_sql_stores
from backend.assistant.external.executor import ExternalCallExecutor, build_executor
from backend.assistant.llm.client import LLMClient, get_llm_client
from backend.assistant.models.chat import ChatRequest, ChatResponse

router = APIRouter(tags=["chat"])
logger = logging.getLogger(__name__)


async def get_stores(session: Annotated[AsyncSession, Depends(get_session)]) -> Stores:
    """SQL-backed repositories bound to the request's session."""
    return build_sql_stores(session)


def get_blob_store(settings: Annotated[Settings, Depends(get_settings)]) -> BlobStore:
    """Blob store selected by settings."""
    return build_blob_store(settings)


def get_call_executor() -> ExternalCallExecutor:
    """External call executor with Prometheus metrics and structured logs."""
    return build_executor()


@router.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    stores: Annotated[Stores, Depends(get_stores)],
    llm: Annotated[LLMClient, Depends(get_llm_client)],
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
    executor: Annotated[ExternalCallExecutor, Depends(get_call_executor)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ChatResponse:
    """Answer a chat message within a group.

    Permission refusals and upstream failures are returned as replies with
    status 200; only authentication (401) and validation (422) errors are
    HTTP errors.
    """
    logger.info(f"Chat request {ctx.request_id} from {ctx.user_id} in group {request.group_id}")
    pipeline = ChatPipeline(stores, llm, blob_store, settings, executor=executor)
    return await pipeline.handle(request.message, request.group_id, ctx)
