"""FastAPI application."""

from fastapi import FastAPI

from backend.assistant.api.routes.chat import router as chat_router
from backend.assistant.api.routes.health import router as health_router
from backend.assistant.api.routes.metrics import router as metrics_router

app = FastAPI(title="Workspace Assistant API", version="0.1.0")

# Register routes
app.include_router(health_router, tags=["health"])
app.include_router(metrics_router, tags=["metrics"])
app.include_router(chat_router, tags=["chat"])


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Workspace Assistant API", "version": "0.1.0"}
