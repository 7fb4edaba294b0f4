"""Integration error taxonomy.

Every error raised by the router or a service derives from IntegrationError,
so node executors can capture service failures into their own result without
catching programming errors.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class IntegrationError(Exception):
    """Base class for all service integration failures."""

    def __init__(self, message: str, service: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.service = service

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "service": self.service,
        }


class ConfigurationError(IntegrationError):
    """A required field is missing or a configured value is not supported."""

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        missing: Optional[List[str]] = None,
    ):
        super().__init__(message, service)
        self.missing = missing or []


class ServiceNotFoundError(IntegrationError):
    """The router was asked for a service kind it does not know."""

    def __init__(self, service: str):
        super().__init__(f"Unknown service type: {service}", service)


class OperationNotFoundError(IntegrationError):
    """The service exists but does not expose the requested operation."""

    def __init__(self, service: str, operation: str):
        super().__init__(
            f"Operation {operation} not supported by {service} service", service
        )
        self.operation = operation


class AuthError(IntegrationError):
    """Inbound webhook authentication failed."""


class NotFoundError(IntegrationError):
    """Unknown webhook id or path."""


class ProviderError(IntegrationError):
    """A provider backend rejected or failed the request."""

    def __init__(self, message: str, service: Optional[str] = None, provider: Optional[str] = None):
        super().__init__(message, service)
        self.provider = provider


class ApiRequestError(ProviderError):
    """An HTTP call returned a non-success status while status validation was on."""

    def __init__(self, status_code: int, status_text: str, url: str):
        super().__init__(
            f"API request failed with status {status_code}: {status_text}",
            service="api",
            provider="http",
        )
        self.status_code = status_code
        self.status_text = status_text
        self.url = url
