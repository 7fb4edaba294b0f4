"""Request dependencies resolving the shared state created in the lifespan."""

from __future__ import annotations

from fastapi import HTTPException, Request

from kobe.integrations import IntegrationRouter, WebhookRegistry


def get_integration_router(request: Request) -> IntegrationRouter:
    router = getattr(request.app.state, "integrations", None)
    if router is None:
        raise HTTPException(status_code=503, detail="Integration router is not initialised")
    return router


def get_webhook_registry(request: Request) -> WebhookRegistry:
    registry = getattr(request.app.state, "webhooks", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Webhook registry is not initialised")
    return registry
