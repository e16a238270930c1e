"""Summarizer fallback - model summaries of extracted text."""

import logging

from backend.assistant.config import Settings
from backend.assistant.external.executor import (
    CallConfig,
    CallContext,
    ExternalCallError,
    ExternalCallExecutor,
)
from backend.assistant.llm.client import LLMClient

logger = logging.getLogger(__name__)

NO_TEXT_PLACEHOLDER = "No readable text could be extracted from this file."


class SummarizerFallback:
    """Summarizes text when a document cannot be attached directly.

    One model call per text. Empty input yields the fixed placeholder without
    calling the model; a failed or empty summary yields the input text itself.
    """

    def __init__(self, llm: LLMClient, executor: ExternalCallExecutor, settings: Settings) -> None:
        self._llm = llm
        self._executor = executor
        self._max_chars = settings.summary_input_max_chars
        self._config = CallConfig.from_settings(settings, timeout_ms=settings.summary_timeout_ms)

    async def summarize(
        self, text: str | None, title: str, *, request_id: str, group_id: str | None
    ) -> str:
        """Summarize `text`, falling back to the text itself on failure.

        Args:
            text: Extracted text (None or blank when extraction found nothing)
            title: Label used in the summarization prompt
            request_id: Request ID for logs
            group_id: Group ID for logs

        Returns:
            Summary, raw text, or the no-text placeholder
        """
        if text is None or not text.strip():
            return NO_TEXT_PLACEHOLDER

        truncated = text[: self._max_chars]
        ctx = CallContext(request_id=request_id, group_id=group_id, call_name="llm.summarize")

        try:
            summary = await self._executor.run(
                ctx, self._config, lambda: self._llm.summarize(truncated, title=title)
            )
        except ExternalCallError as e:
            logger.warning(f"Summary failed for {title}, using raw text: {e}")
            return text

        if not summary or not summary.strip():
            logger.warning(f"Empty summary for {title}, using raw text")
            return text
        return summary.strip()
