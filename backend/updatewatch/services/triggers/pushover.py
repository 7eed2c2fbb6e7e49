"""Pushover trigger provider."""

import logging
from typing import Any, Sequence

import httpx

from updatewatch.schemas.container import Container
from updatewatch.schemas.trigger import PushoverConfiguration
from updatewatch.services.triggers.base import (
    TriggerContext,
    TriggerProvider,
    render_batch_body,
    render_batch_title,
    render_simple_body,
    render_simple_title,
    send_http_request,
)
from updatewatch.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

PUSHOVER_API_URL = "https://api.pushover.net/1/messages.json"


class PushoverTrigger(TriggerProvider):
    """Pushover push notification provider."""

    provider_type = "pushover"
    configuration_schema = PushoverConfiguration
    sensitive_fields = ("user", "token")
    reentrant = True

    def __init__(self, name: str, configuration: PushoverConfiguration, context: TriggerContext) -> None:
        super().__init__(name, configuration, context)
        self.client = httpx.AsyncClient(timeout=10.0)

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    async def trigger(self, container: Container) -> Any:
        return await self._send(
            render_simple_title(self.configuration, container),
            render_simple_body(self.configuration, container),
        )

    async def trigger_batch(self, containers: Sequence[Container]) -> Any:
        return await self._send(
            render_batch_title(self.configuration, containers),
            render_batch_body(self.configuration, containers),
        )

    def build_message(self, title: str, message: str) -> dict[str, Any]:
        """Build the Pushover message (credentials excluded)."""
        payload: dict[str, Any] = {
            "title": title,
            "message": message,
            "priority": self.configuration.priority,
            "sound": self.configuration.sound,
            "html": self.configuration.html,
        }
        if self.configuration.device:
            payload["device"] = self.configuration.device
        # Emergency priority requires retry and expire
        if self.configuration.priority == 2:
            payload["retry"] = self.configuration.retry
            payload["expire"] = self.configuration.expire
        return payload

    async def _send(self, title: str, message: str) -> dict[str, Any]:
        payload = self.build_message(title, message)
        await send_http_request(
            self.provider_type,
            self.client,
            "POST",
            PUSHOVER_API_URL,
            data={
                "token": self.configuration.token,
                "user": self.configuration.user,
                **payload,
            },
        )
        logger.info(f"[pushover] Sent notification: {sanitize_log_message(title)}")
        return payload
