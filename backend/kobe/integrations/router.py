"""Integration router: one entry point for every (service, operation) pair."""

from __future__ import annotations

import logging
import random
from typing import Any, Dict, Optional, Union

import httpx

from .api_service import ApiService
from .base import BaseService, ServiceKind, to_snake_case
from .database_service import DatabaseService
from .email_service import EmailService
from .errors import IntegrationError, OperationNotFoundError
from .file_storage_service import FileStorageService
from .webhook_service import WebhookRegistry

logger = logging.getLogger(__name__)


class IntegrationRouter:
    """Dispatches operations to the registered services.

    Every ServiceKind must have a service; lookups go through the kind enum
    so an unknown service name fails before any service code runs.
    """

    def __init__(self, services: Dict[ServiceKind, BaseService]):
        missing = [kind.value for kind in ServiceKind if kind not in services]
        if missing:
            raise ValueError(f"No service registered for: {missing}")
        self.services = services

    @property
    def webhooks(self) -> WebhookRegistry:
        return self.services[ServiceKind.WEBHOOK]  # type: ignore[return-value]

    def get_service(self, service: Union[str, ServiceKind]) -> BaseService:
        return self.services[ServiceKind.parse(service)]

    async def execute(
        self,
        service: Union[str, ServiceKind],
        operation: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Run ``operation`` on ``service`` with ``params``.

        Raises:
            ServiceNotFoundError: ``service`` is not a known kind
            OperationNotFoundError: the service does not expose ``operation``
            IntegrationError: whatever the operation raises, unchanged
        """
        kind = ServiceKind.parse(service)
        target = self.services[kind]
        if not target.supports(operation):
            raise OperationNotFoundError(kind.value, operation)

        logger.info(f"Executing {operation} on {kind.value} service")
        handler = getattr(target, to_snake_case(operation))
        try:
            return await handler(params or {})
        except (IntegrationError, httpx.HTTPError) as e:
            logger.error(f"Integration execution failed: {e}")
            raise


def create_router(
    webhook_registry: Optional[WebhookRegistry] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    rng: Optional[random.Random] = None,
    delay_scale: Optional[float] = None,
    local_storage_root: Optional[str] = None,
) -> IntegrationRouter:
    """Build a router wired to the default service implementations.

    Args:
        webhook_registry: Shared registry (a fresh one is created if omitted)
        transport: httpx transport for the API service (tests pass a MockTransport)
        rng: Random source for simulated providers
        delay_scale: Multiplier for simulated latency (0 disables it)
        local_storage_root: Root directory of the ``local`` file provider
    """
    rng = rng or random.Random()
    common: Dict[str, Any] = {"rng": rng, "delay_scale": delay_scale}
    api = ApiService(transport=transport, **common)
    return IntegrationRouter({
        ServiceKind.API: api,
        ServiceKind.EMAIL: EmailService(api=api, **common),
        ServiceKind.DATABASE: DatabaseService(**common),
        ServiceKind.FILE_STORAGE: FileStorageService(local_root=local_storage_root, **common),
        ServiceKind.WEBHOOK: webhook_registry or WebhookRegistry(**common),
    })
