"""Email service with per-provider senders."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .api_service import ApiService
from .base import BaseService, ServiceKind, now_ms
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
DEFAULT_SENDER = "noreply@kobeapp.com"
MOCK_DELAY_MS = 500


class EmailProvider(str, Enum):
    SENDGRID = "sendgrid"
    MAILCHIMP = "mailchimp"
    SMTP = "smtp"
    MOCK = "mock"


def split_recipients(to: str) -> List[str]:
    return [addr.strip() for addr in str(to).split(",") if addr.strip()]


class EmailService(BaseService):
    """Sends email through SendGrid, Mailchimp, SMTP or the simulated provider.

    SendGrid goes through the shared ApiService. Mailchimp and SMTP are
    adapter seams: they validate their credentials and return a success
    envelope tagged with their provider name.
    """

    kind = ServiceKind.EMAIL
    operations = ("send_email",)

    def __init__(self, api: Optional[ApiService] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.api = api or ApiService(rng=self.rng, delay_scale=self.delay_scale)
        self._senders: Dict[EmailProvider, Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
            EmailProvider.SENDGRID: self._send_with_sendgrid,
            EmailProvider.MAILCHIMP: self._send_with_mailchimp,
            EmailProvider.SMTP: self._send_with_smtp,
            EmailProvider.MOCK: self._send_with_mock,
        }

    async def send_email(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self._require(
            params, "to", "subject",
            message="Email recipient and subject are required",
        )
        provider = self._select_provider(params, EmailProvider)
        logger.info(f"Sending email to {params['to']} using {provider.value}")
        return await self._senders[provider](params)

    async def _send_with_sendgrid(self, params: Dict[str, Any]) -> Dict[str, Any]:
        api_key = self._provider_config(params).get("apiKey")
        if not api_key:
            raise ConfigurationError("SendGrid API key is required", service=self.kind.value)

        personalization: Dict[str, Any] = {
            "to": [{"email": addr} for addr in split_recipients(params["to"])],
            "subject": params["subject"],
        }
        payload: Dict[str, Any] = {
            "personalizations": [personalization],
            "from": {"email": params.get("from") or DEFAULT_SENDER},
            "content": [{"type": "text/html", "value": params.get("body") or ""}],
        }
        if params.get("template") and params.get("templateData"):
            payload["template_id"] = params["template"]
            personalization["dynamic_template_data"] = params["templateData"]

        response = await self.api.make_request({
            "url": SENDGRID_URL,
            "method": "POST",
            "headers": {"Authorization": f"Bearer {api_key}"},
            "body": payload,
            "validateStatus": True,
        })
        return {
            "status": "success",
            "provider": EmailProvider.SENDGRID.value,
            "messageId": response["headers"].get("x-message-id"),
            "statusCode": response["statusCode"],
        }

    async def _send_with_mailchimp(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self._provider_config(params).get("apiKey"):
            raise ConfigurationError("Mailchimp API key is required", service=self.kind.value)
        return {
            "status": "success",
            "provider": EmailProvider.MAILCHIMP.value,
            "messageId": f"mailchimp-{now_ms()}",
        }

    async def _send_with_smtp(self, params: Dict[str, Any]) -> Dict[str, Any]:
        smtp = self._provider_config(params)
        if not smtp.get("host") or not smtp.get("port"):
            raise ConfigurationError("SMTP host and port are required", service=self.kind.value)
        return {
            "status": "success",
            "provider": EmailProvider.SMTP.value,
            "messageId": f"smtp-{now_ms()}",
        }

    async def _send_with_mock(self, params: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug("Using mock email provider for simulation")
        await self._simulate_delay(MOCK_DELAY_MS)
        return {
            "status": "success",
            "provider": EmailProvider.MOCK.value,
            "messageId": f"mock-{now_ms()}",
            "to": params["to"],
            "subject": params["subject"],
            "template": params.get("template") or "none",
        }

    @staticmethod
    def _provider_config(params: Dict[str, Any]) -> Dict[str, Any]:
        return params.get("providerConfig") or {}
