"""HTTP API service backed by httpx."""

from __future__ import annotations

import base64
import logging
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from .. import settings
from .base import BaseService, ServiceKind
from .errors import ApiRequestError, ConfigurationError

logger = logging.getLogger(__name__)


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class ApiAuthType(str, Enum):
    NONE = "none"
    BASIC = "basic"
    OAUTH = "oauth"
    BEARER = "bearer"
    APIKEY = "apikey"


class ApiService(BaseService):
    """Issues HTTP requests on behalf of action and data-source nodes.

    ``transport`` lets callers (and tests) swap the network layer, e.g. for
    ``httpx.MockTransport``.
    """

    kind = ServiceKind.API
    operations = ("make_request",)

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_ms: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self._transport = transport
        self.timeout_ms = timeout_ms or settings.HTTP_TIMEOUT_MS

    async def make_request(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Perform a request.

        Args:
            params: ``url`` (required), ``method`` (default GET), ``headers``,
                ``body``, ``authType``/``authConfig``, ``timeout`` in
                milliseconds and ``validateStatus``.

        Returns:
            ``{status, provider, statusCode, statusText, headers, data}``

        Raises:
            ConfigurationError: missing URL or unsupported method/auth type
            ApiRequestError: non-2xx response while ``validateStatus`` is set
            httpx.HTTPError: transport failures, propagated unchanged
        """
        self._require(params, "url", message="API request URL is required")

        method = self._parse_method(params.get("method"))
        headers = self._prepare_headers(
            params.get("headers"), params.get("authType"), params.get("authConfig")
        )
        timeout_ms = params.get("timeout") or self.timeout_ms

        request_kwargs: Dict[str, Any] = {"headers": headers}
        body = params.get("body")
        if method is not HttpMethod.GET and body not in (None, ""):
            if isinstance(body, (str, bytes)):
                request_kwargs["content"] = body
            else:
                request_kwargs["json"] = body

        url = params["url"]
        logger.info(f"Making {method.value} request to {url}")

        async with httpx.AsyncClient(
            transport=self._transport, timeout=float(timeout_ms) / 1000.0
        ) as client:
            response = await client.request(method.value, url, **request_kwargs)

        if params.get("validateStatus") and not response.is_success:
            raise ApiRequestError(response.status_code, response.reason_phrase, url)

        return {
            "status": "success",
            "provider": "http",
            "statusCode": response.status_code,
            "statusText": response.reason_phrase,
            "headers": dict(response.headers),
            "data": self._parse_body(response),
        }

    def _parse_method(self, value: Any) -> HttpMethod:
        text = str(value or "GET").upper()
        try:
            return HttpMethod(text)
        except ValueError:
            raise ConfigurationError(
                f"Unsupported HTTP method: {value}", service=self.kind.value
            ) from None

    def _prepare_headers(
        self,
        headers: Optional[Dict[str, Any]],
        auth_type: Optional[str],
        auth_config: Optional[Dict[str, Any]],
    ) -> Dict[str, str]:
        prepared = {str(k): str(v) for k, v in (headers or {}).items()}
        if not any(k.lower() == "content-type" for k in prepared):
            prepared["Content-Type"] = "application/json"

        auth_config = auth_config or {}
        try:
            kind = ApiAuthType(str(auth_type or "none").lower())
        except ValueError:
            raise ConfigurationError(
                f"Unsupported authentication type: {auth_type}", service=self.kind.value
            ) from None

        if kind is ApiAuthType.BASIC:
            username = auth_config.get("username")
            password = auth_config.get("password")
            if username and password:
                token = base64.b64encode(f"{username}:{password}".encode()).decode()
                prepared["Authorization"] = f"Basic {token}"
        elif kind in (ApiAuthType.OAUTH, ApiAuthType.BEARER):
            if auth_config.get("token"):
                prepared["Authorization"] = f"Bearer {auth_config['token']}"
        elif kind is ApiAuthType.APIKEY:
            key = auth_config.get("key")
            if key:
                prepared[auth_config.get("headerName") or "X-API-Key"] = str(key)

        return prepared

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                return response.json()
            except ValueError:
                logger.warning("Response declared JSON but could not be decoded")
        return response.text
