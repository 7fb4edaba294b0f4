"""Shared plumbing for integration services.

Provides the closed ServiceKind set, operation-name normalisation and the
BaseService helpers every service builds on: required-field checks,
provider selection from a closed enum, and the scaled artificial latency of
simulated providers.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type, TypeVar

from .. import settings
from .errors import ConfigurationError, ServiceNotFoundError

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

# Provider values that select the simulated backend
_SIMULATED_ALIASES = {"", "mock", "default", "simulated"}


class ServiceKind(str, Enum):
    """The five services the router dispatches to."""

    API = "api"
    EMAIL = "email"
    DATABASE = "database"
    FILE_STORAGE = "fileStorage"
    WEBHOOK = "webhook"

    @classmethod
    def parse(cls, value: Any) -> "ServiceKind":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip()
        for kind in cls:
            if text == kind.value or to_snake_case(text) == to_snake_case(kind.value):
                return kind
        raise ServiceNotFoundError(text)


def to_snake_case(name: str) -> str:
    """``sendEmail`` -> ``send_email``; snake_case input is returned as-is."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


class BaseService:
    """Base class for integration services.

    Subclasses set ``kind`` and list their public coroutine methods in
    ``operations``. Only listed names are reachable through the router.
    """

    kind: ServiceKind
    operations: Tuple[str, ...] = ()

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        delay_scale: Optional[float] = None,
    ):
        self.rng = rng or random.Random()
        self.delay_scale = (
            settings.SIMULATED_DELAY_SCALE if delay_scale is None else delay_scale
        )

    def supports(self, operation: str) -> bool:
        return to_snake_case(operation) in self.operations

    async def _simulate_delay(self, milliseconds: int) -> None:
        """Sleep to model provider latency, scaled by ``delay_scale``."""
        seconds = (milliseconds / 1000.0) * self.delay_scale
        if seconds > 0:
            await asyncio.sleep(seconds)

    def _require(self, params: Dict[str, Any], *fields: str, message: Optional[str] = None) -> None:
        missing = [name for name in fields if params.get(name) in (None, "")]
        if missing:
            raise ConfigurationError(
                message or f"Missing required field(s): {', '.join(missing)}",
                service=self.kind.value,
                missing=missing,
            )

    def _select_provider(
        self,
        params: Dict[str, Any],
        provider_enum: Type[E],
        key: str = "provider",
    ) -> E:
        """Map the provider discriminator onto ``provider_enum``.

        Absent values and the simulated aliases pick ``provider_enum.MOCK``;
        anything else must be a declared member.
        """
        raw = str(params.get(key) or "").strip()
        if raw.lower() in _SIMULATED_ALIASES:
            return provider_enum["MOCK"]
        for member in provider_enum:
            if raw.lower() == str(member.value).lower():
                return member
        supported = ", ".join(str(m.value) for m in provider_enum)
        raise ConfigurationError(
            f"Unsupported {self.kind.value} provider '{raw}' (supported: {supported})",
            service=self.kind.value,
        )
