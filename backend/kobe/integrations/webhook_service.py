"""Webhook registry: registration, authenticated dispatch and history.

One registry is constructed per process (see ``create_router``) and shared by
every run; it is only mutated by ``register_webhook`` and ``delete_webhook``.
"""

from __future__ import annotations

import hashlib
import hmac
import inspect
import itertools
import json
import logging
import string
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Union

from .. import settings
from .base import BaseService, ServiceKind, now_ms, utc_now_iso
from .errors import AuthError, ConfigurationError, NotFoundError

logger = logging.getLogger(__name__)

TOKEN_HEADER = "x-webhook-token"
SIGNATURE_HEADER = "x-webhook-signature"
SIGNATURE_PREFIX = "sha256="

WebhookHandler = Callable[[Any, Dict[str, str]], Any]


class WebhookAuthType(str, Enum):
    NONE = "none"
    TOKEN = "token"
    HMAC = "hmac"


@dataclass
class WebhookRegistration:
    id: str
    path: str
    handler: WebhookHandler
    description: str = "Webhook endpoint"
    auth_type: WebhookAuthType = WebhookAuthType.NONE
    auth_config: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=utc_now_iso)
    url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Public view; never exposes auth secrets or the handler."""
        return {
            "id": self.id,
            "path": self.path,
            "url": self.url,
            "description": self.description,
            "authType": self.auth_type.value,
            "createdAt": self.created_at,
        }


def normalize_headers(headers: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    return {str(k).lower(): str(v) for k, v in (headers or {}).items()}


def body_bytes(body: Any) -> bytes:
    """Canonical byte form of a webhook body, used for signing."""
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    return json.dumps(body, separators=(",", ":"), sort_keys=True).encode("utf-8")


def sign_body(secret: str, body: Any) -> str:
    """Return the ``sha256=<hex>`` signature a sender should attach."""
    digest = hmac.new(secret.encode("utf-8"), body_bytes(body), hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


class WebhookRegistry(BaseService):
    """Registered webhooks keyed by id, plus their dispatch history."""

    kind = ServiceKind.WEBHOOK
    operations = (
        "register_webhook",
        "process_webhook",
        "delete_webhook",
        "get_webhook_history",
        "test_webhook",
    )

    def __init__(
        self,
        base_url: Optional[str] = None,
        history_limit: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.base_url = (base_url or settings.WEBHOOK_BASE_URL).rstrip("/")
        self._webhooks: Dict[str, WebhookRegistration] = {}
        limit = settings.WEBHOOK_HISTORY_LIMIT if history_limit is None else history_limit
        # Oldest dispatches fall off once the cap is reached
        self._history: Deque[Dict[str, Any]] = deque(maxlen=max(limit, 1))
        self._sequence = itertools.count()

    def __len__(self) -> int:
        return len(self._webhooks)

    def get(self, webhook_id: str) -> Optional[WebhookRegistration]:
        return self._webhooks.get(webhook_id)

    def find_by_path(self, path: str) -> Optional[WebhookRegistration]:
        for webhook in self._webhooks.values():
            if webhook.path == path:
                return webhook
        return None

    def registrations(self) -> List[WebhookRegistration]:
        return list(self._webhooks.values())

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def register_webhook(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self._require(
            params, "path", "handler",
            message="Webhook path and handler function are required",
        )
        if not callable(params["handler"]):
            raise ConfigurationError("Webhook handler must be callable", service=self.kind.value)

        raw_auth = str(params.get("authType") or "none").lower()
        try:
            auth_type = WebhookAuthType(raw_auth)
        except ValueError:
            raise ConfigurationError(
                f"Unsupported authentication type: {raw_auth}", service=self.kind.value
            ) from None

        auth_config = params.get("authConfig") or {}
        if auth_type is WebhookAuthType.TOKEN and not auth_config.get("token"):
            raise ConfigurationError("Token authentication requires authConfig.token", service=self.kind.value)
        if auth_type is WebhookAuthType.HMAC and not auth_config.get("secret"):
            raise ConfigurationError("HMAC authentication requires authConfig.secret", service=self.kind.value)

        path = str(params["path"])
        existing = self.find_by_path(path)
        if existing is not None:
            logger.info(f"Replacing webhook {existing.id} registered at {path}")
            del self._webhooks[existing.id]

        webhook = WebhookRegistration(
            id=self._generate_id(),
            path=path,
            handler=params["handler"],
            description=params.get("description") or "Webhook endpoint",
            auth_type=auth_type,
            auth_config=dict(auth_config),
            url=f"{self.base_url}{path}",
        )
        self._webhooks[webhook.id] = webhook
        logger.info(f"Registered webhook {webhook.id} at path: {path}")
        return webhook.to_dict()

    async def process_webhook(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Authenticate an inbound request and run the registered handler.

        Args:
            params: ``path``, ``headers`` (any case), ``body`` and optionally
                ``rawBody`` (the exact bytes received, used for HMAC checks).

        Raises:
            NotFoundError: no webhook at ``path``
            AuthError: token mismatch, missing or invalid signature
        """
        path = str(params.get("path") or "")
        logger.info(f"Processing webhook request for path: {path}")

        webhook = self.find_by_path(path)
        if webhook is None:
            raise NotFoundError(f"No webhook registered for path: {path}", service=self.kind.value)

        headers = normalize_headers(params.get("headers"))
        body = params.get("body")
        raw_body = params.get("rawBody")
        self._authenticate(webhook, headers, body if raw_body is None else raw_body)

        self._history.append({
            "webhookId": webhook.id,
            "path": path,
            "timestamp": utc_now_iso(),
            "headers": headers,
            "body": body,
            "_seq": next(self._sequence),
        })

        result = webhook.handler(body, headers)
        if inspect.isawaitable(result):
            result = await result

        return {
            "status": "success",
            "provider": self.kind.value,
            "webhookId": webhook.id,
            "result": result,
        }

    async def delete_webhook(self, params: Dict[str, Any]) -> Dict[str, Any]:
        webhook_id = params.get("webhookId") or params.get("id")
        if webhook_id not in self._webhooks:
            raise NotFoundError(f"Webhook with ID {webhook_id} not found", service=self.kind.value)
        del self._webhooks[webhook_id]
        logger.info(f"Deleted webhook with ID: {webhook_id}")
        return {"status": "success", "provider": self.kind.value, "webhookId": webhook_id, "deleted": True}

    async def get_webhook_history(self, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """History entries, newest first, optionally filtered and limited."""
        params = params or {}
        entries = self._history
        if params.get("webhookId"):
            entries = [e for e in entries if e["webhookId"] == params["webhookId"]]

        entries = sorted(entries, key=lambda e: e["_seq"], reverse=True)
        limit = params.get("limit")
        if limit and int(limit) > 0:
            entries = entries[: int(limit)]
        return [{k: v for k, v in e.items() if k != "_seq"} for e in entries]

    async def test_webhook(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Dispatch ``payload`` to a webhook with valid auth headers attached."""
        webhook_id = params.get("webhookId") or params.get("id")
        webhook = self._webhooks.get(webhook_id)
        if webhook is None:
            raise NotFoundError(f"Webhook with ID {webhook_id} not found", service=self.kind.value)

        payload = params.get("payload") or {}
        headers = {
            "content-type": "application/json",
            "user-agent": "Kobe-Webhook-Tester/1.0",
        }
        if webhook.auth_type is WebhookAuthType.TOKEN:
            headers[TOKEN_HEADER] = webhook.auth_config["token"]
        elif webhook.auth_type is WebhookAuthType.HMAC:
            headers[SIGNATURE_HEADER] = sign_body(webhook.auth_config["secret"], payload)

        return await self.process_webhook({"path": webhook.path, "headers": headers, "body": payload})

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _generate_id(self) -> str:
        alphabet = string.ascii_lowercase + string.digits
        suffix = "".join(self.rng.choice(alphabet) for _ in range(9))
        return f"webhook_{now_ms()}_{suffix}"

    def _authenticate(self, webhook: WebhookRegistration, headers: Dict[str, str], body: Union[bytes, Any]) -> None:
        if webhook.auth_type is WebhookAuthType.NONE:
            return

        if webhook.auth_type is WebhookAuthType.TOKEN:
            token = headers.get(TOKEN_HEADER) or headers.get("authorization") or ""
            if token.startswith("Bearer "):
                token = token[len("Bearer "):]
            expected = str(webhook.auth_config.get("token", ""))
            if not token or not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
                raise AuthError("Invalid webhook token", service=self.kind.value)
            return

        signature = headers.get(SIGNATURE_HEADER)
        if not signature:
            raise AuthError("Missing webhook signature", service=self.kind.value)
        if signature.startswith(SIGNATURE_PREFIX):
            signature = signature[len(SIGNATURE_PREFIX):]
        expected = sign_body(str(webhook.auth_config["secret"]), body)[len(SIGNATURE_PREFIX):]
        if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
            raise AuthError("Invalid webhook signature", service=self.kind.value)
