"""Webhook registration endpoints and the inbound webhook listener.

A registered webhook runs its workflow graph with the inbound body as the
trigger payload; the run result is returned to the caller.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request

from kobe.engine.executor import execute_workflow
from kobe.engine.graph_model import WorkflowGraph, validate_graph
from kobe.integrations import (
    AuthError,
    ConfigurationError,
    IntegrationRouter,
    NotFoundError,
    WebhookRegistry,
)

from ..dependencies import get_integration_router, get_webhook_registry
from ..schemas import WebhookCreateRequest, WebhookResponse
from .workflows import build_graph

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v2/webhooks", tags=["webhooks"])
hooks_router = APIRouter(prefix="/hooks", tags=["webhooks"])


def _normalize_path(path: str) -> str:
    return "/" + path.strip().lstrip("/")


def _graph_handler(graph: WorkflowGraph, integrations: IntegrationRouter):
    async def handler(body: Any, headers: Dict[str, str]) -> Dict[str, Any]:
        run = await execute_workflow(graph, router=integrations, trigger_payload=body)
        return run.to_dict()

    return handler


def _raise_http(e: Exception) -> None:
    if isinstance(e, NotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, AuthError):
        raise HTTPException(status_code=401, detail=str(e))
    raise HTTPException(status_code=400, detail=str(e))


@router.post("", response_model=WebhookResponse, status_code=201)
async def register_webhook(
    payload: WebhookCreateRequest,
    integrations: IntegrationRouter = Depends(get_integration_router),
    registry: WebhookRegistry = Depends(get_webhook_registry),
):
    """Register a webhook whose handler runs ``payload.graph``."""
    graph = build_graph(payload.graph)
    result = validate_graph(graph)
    if not result.valid:
        raise HTTPException(
            status_code=422,
            detail={"message": "Graph validation failed", "errors": result.error_messages},
        )

    try:
        registration = await registry.register_webhook({
            "path": _normalize_path(payload.path),
            "handler": _graph_handler(graph, integrations),
            "description": payload.description,
            "authType": payload.auth_type,
            "authConfig": payload.auth_config,
        })
    except ConfigurationError as e:
        _raise_http(e)
    return WebhookResponse(**registration)


@router.get("", response_model=List[WebhookResponse])
async def list_webhooks(registry: WebhookRegistry = Depends(get_webhook_registry)):
    return [WebhookResponse(**w.to_dict()) for w in registry.registrations()]


@router.get("/history")
async def get_webhook_history(
    webhook_id: Optional[str] = Query(None, alias="webhookId"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    registry: WebhookRegistry = Depends(get_webhook_registry),
):
    """Dispatch history, newest first."""
    return await registry.get_webhook_history({"webhookId": webhook_id, "limit": limit})


@router.delete("/{webhook_id}")
async def delete_webhook(
    webhook_id: str,
    registry: WebhookRegistry = Depends(get_webhook_registry),
):
    try:
        return await registry.delete_webhook({"webhookId": webhook_id})
    except NotFoundError as e:
        _raise_http(e)


@router.post("/{webhook_id}/test")
async def test_webhook(
    webhook_id: str,
    payload: Optional[Dict[str, Any]] = Body(None),
    registry: WebhookRegistry = Depends(get_webhook_registry),
):
    """Dispatch ``payload`` to the webhook with valid authentication attached."""
    try:
        return await registry.test_webhook({"webhookId": webhook_id, "payload": payload})
    except (NotFoundError, AuthError) as e:
        _raise_http(e)


@hooks_router.post("/{path:path}")
async def receive_webhook(
    path: str,
    request: Request,
    registry: WebhookRegistry = Depends(get_webhook_registry),
):
    """Inbound listener: authenticate, record and dispatch to the handler."""
    raw_body = await request.body()
    body: Any = raw_body.decode("utf-8", errors="replace")
    if "json" in request.headers.get("content-type", "") and raw_body:
        try:
            body = json.loads(raw_body)
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail="Request body is not valid JSON")

    try:
        return await registry.process_webhook({
            "path": _normalize_path(path),
            "headers": dict(request.headers),
            "body": body,
            "rawBody": raw_body,
        })
    except (NotFoundError, AuthError, ConfigurationError) as e:
        logger.warning(f"Rejected webhook request for /{path}: {e}")
        _raise_http(e)
