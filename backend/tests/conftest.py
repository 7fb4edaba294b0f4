"""Root conftest for engine and API tests.

Provides:
- An integration router with simulated latency disabled
- A factory for small workflow graphs
- FastAPI AsyncClient over ASGITransport with the router pre-installed
"""

from __future__ import annotations

import random
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from kobe.engine.graph_model import EdgeDefinition, WorkflowGraph, WorkflowNode
from kobe.integrations import IntegrationRouter, WebhookRegistry, create_router


@pytest.fixture
def rng() -> random.Random:
    """Seeded random source so simulated providers are repeatable."""
    return random.Random(1234)


@pytest.fixture
def webhook_registry(rng: random.Random) -> WebhookRegistry:
    return WebhookRegistry(base_url="https://hooks.test", rng=rng, delay_scale=0)


@pytest.fixture
def router(webhook_registry: WebhookRegistry, rng: random.Random, tmp_path) -> IntegrationRouter:
    """Router over the default services, no simulated sleeping."""
    return create_router(
        webhook_registry=webhook_registry,
        rng=rng,
        delay_scale=0,
        local_storage_root=str(tmp_path),
    )


def _make_graph(
    nodes: List[Tuple[str, str, Dict[str, Any]]],
    edges: List[tuple] = (),
    labels: Optional[Dict[str, str]] = None,
) -> WorkflowGraph:
    """Build a graph from ``(id, type, config)`` tuples and ``(source, target[, label])`` edges."""
    labels = labels or {}
    return WorkflowGraph(
        nodes=[
            WorkflowNode(id=nid, type=ntype, config=config, label=labels.get(nid, f"Node {nid}"))
            for nid, ntype, config in nodes
        ],
        edges=[
            EdgeDefinition(
                id=f"e{edge[0]}-{edge[1]}",
                source=edge[0],
                target=edge[1],
                label=edge[2] if len(edge) > 2 else None,
            )
            for edge in edges
        ],
    )


@pytest.fixture
def make_graph():
    return _make_graph


@pytest_asyncio.fixture
async def client(router: IntegrationRouter) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for the FastAPI routes.

    ASGITransport does not run the lifespan, so the shared state is installed
    directly and removed afterwards.
    """
    from app.main import app

    app.state.integrations = router
    app.state.webhooks = router.webhooks
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        app.state.integrations = None
        app.state.webhooks = None
