"""Service integrations: HTTP API, email, database, file storage and webhooks."""

from .base import ServiceKind
from .errors import (
    ApiRequestError,
    AuthError,
    ConfigurationError,
    IntegrationError,
    NotFoundError,
    OperationNotFoundError,
    ProviderError,
    ServiceNotFoundError,
)
from .router import IntegrationRouter, create_router
from .webhook_service import WebhookRegistry

__all__ = [
    "ApiRequestError",
    "AuthError",
    "ConfigurationError",
    "IntegrationError",
    "IntegrationRouter",
    "NotFoundError",
    "OperationNotFoundError",
    "ProviderError",
    "ServiceKind",
    "ServiceNotFoundError",
    "WebhookRegistry",
    "create_router",
]
