"""Health check endpoints.

- /health: process liveness
- /healthz: database connectivity with component details
"""

import json
from typing import Any

from fastapi import APIRouter, Response
from sqlalchemy import text

from backend.assistant.db.engine import get_async_engine

router = APIRouter()


async def check_db() -> tuple[bool, str]:
    """Check database connectivity.

    Returns:
        (is_ok, status_message)
    """
    try:
        async with get_async_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return (True, "ok")
    except Exception as e:
        return (False, f"error: {type(e).__name__}")


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple health check for Docker/k8s.

    Returns:
        200 OK always (application is running)
    """
    return {"status": "ok"}


@router.get("/healthz", response_model=None)
async def healthz() -> dict[str, Any] | Response:
    """Health check endpoint.

    Returns:
        200 with component status if the database is reachable
        503 otherwise
    """
    db_ok, db_status = await check_db()

    response_body = {
        "status": "ok" if db_ok else "degraded",
        "components": {"db": db_status},
    }

    if not db_ok:
        return Response(
            content=json.dumps(response_body),
            status_code=503,
            media_type="application/json",
        )

    return response_body
