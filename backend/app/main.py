"""FastAPI Application Entry Point.

Configures the app, lifespan, CORS, and includes all route modules.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kobe import settings
from kobe.integrations import WebhookRegistry, create_router
from kobe.logging_config import get_api_logger, get_engine_logger

# Ensure node types are registered at import time
import kobe.nodes  # noqa: F401

logger = logging.getLogger(__name__)


def init_state(app: FastAPI) -> None:
    """Create the process-wide webhook registry and integration router.

    Existing state is kept, so tests can install their own router first.
    """
    if getattr(app.state, "integrations", None) is not None:
        return
    registry = WebhookRegistry()
    app.state.webhooks = registry
    app.state.integrations = create_router(
        webhook_registry=registry,
        local_storage_root=settings.LOCAL_STORAGE_ROOT,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and build the shared integration state."""
    get_engine_logger()
    get_api_logger()
    init_state(app)
    logger.info(f"Kobe API ready, webhook base URL: {app.state.webhooks.base_url}")
    yield
    logger.info(f"Shutting down with {len(app.state.webhooks)} registered webhooks")


app = FastAPI(title="Kobe Workflow API", version="1.0.0", lifespan=lifespan)

# CORS origins come from the CORS_ORIGINS env var (comma-separated)
_default_origins = "http://localhost:3000,http://127.0.0.1:3000"
CORS_ORIGINS = [
    o.strip() for o in os.getenv("CORS_ORIGINS", _default_origins).split(",") if o.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
from .routes.workflows import router as workflows_router  # noqa: E402
from .routes.validation import router as validation_router  # noqa: E402
from .routes.templates import router as templates_router  # noqa: E402
from .routes.webhooks import router as webhooks_router, hooks_router  # noqa: E402

app.include_router(workflows_router)
app.include_router(validation_router)
app.include_router(templates_router)
app.include_router(webhooks_router)
app.include_router(hooks_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "ok"}


def serve() -> None:
    """Console entry point: run the API under uvicorn."""
    import uvicorn

    uvicorn.run("app.main:app", host=settings.API_HOST, port=settings.API_PORT)
