"""Structured logging for external collaborator calls."""

import logging
from typing import Any

from backend.assistant.external.executor import CallContext

logger = logging.getLogger(__name__)

# Outcomes the caller expects and handles itself (e.g. a missing blob)
_EXPECTED_OUTCOMES = {"success", "passthrough"}


def collaborator_of(call_name: str) -> str:
    """Collaborator behind a call name: "blob.download" -> "blob"."""
    return call_name.split(".", 1)[0]


class StructuredCallLogger:
    """Logs every attempt of an external call with its request and group."""

    def log_attempt(
        self,
        ctx: CallContext,
        attempt: int,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
    ) -> None:
        structured: dict[str, Any] = {
            "request_id": ctx.request_id,
            "group_id": ctx.group_id,
            "collaborator": collaborator_of(ctx.call_name),
            "call": ctx.call_name,
            "attempt": attempt,
            "outcome": outcome,
            "latency_ms": round(latency_ms, 2),
        }
        if error_reason:
            structured["error_reason"] = error_reason

        message = f"{ctx.call_name} attempt {attempt}: {outcome}"
        if error_reason and outcome != "success":
            message += f" ({error_reason})"

        level = logging.INFO if outcome in _EXPECTED_OUTCOMES else logging.WARNING
        logger.log(level, message, extra={"structured": structured})
