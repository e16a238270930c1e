"""Prometheus metrics endpoint."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint.

    Exposes all registered Prometheus metrics including:
    - external_call_latency_ms{call, outcome}
    - external_call_errors_total{call, reason}
    - chat_intents_total{intent}
    - context_fragments_total{representation}
    - command_outcomes_total{command, outcome}
    """
    metrics_output = generate_latest()
    return Response(content=metrics_output, media_type=CONTENT_TYPE_LATEST)
