"""Discord trigger provider (webhook)."""

import logging
from typing import Any, Sequence

import httpx

from updatewatch.schemas.container import Container
from updatewatch.schemas.trigger import DiscordConfiguration
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
from updatewatch.utils.url_validation import validate_provider_url

logger = logging.getLogger(__name__)

# Discord embed limits
MAX_TITLE_LENGTH = 256
MAX_FIELD_VALUE_LENGTH = 1024


class DiscordTrigger(TriggerProvider):
    """Discord webhook notification provider."""

    provider_type = "discord"
    configuration_schema = DiscordConfiguration
    sensitive_fields = ("url",)
    reentrant = True

    def __init__(self, name: str, configuration: DiscordConfiguration, context: TriggerContext) -> None:
        """Initialize Discord provider.

        Raises:
            SSRFProtectionError: If the webhook URL fails SSRF validation
        """
        super().__init__(name, configuration, context)
        validate_provider_url(configuration.url, allowed_schemes=["https"])
        self.client = httpx.AsyncClient(timeout=10.0)

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    async def trigger(self, container: Container) -> Any:
        return await self.send_message(
            render_simple_title(self.configuration, container),
            render_simple_body(self.configuration, container),
        )

    async def trigger_batch(self, containers: Sequence[Container]) -> Any:
        return await self.send_message(
            render_batch_title(self.configuration, containers),
            render_batch_body(self.configuration, containers),
        )

    def build_payload(self, title: str, body: str) -> dict[str, Any]:
        return {
            "username": self.configuration.botusername,
            "embeds": [
                {
                    "title": title[:MAX_TITLE_LENGTH],
                    "color": self.configuration.cardcolor,
                    "fields": [
                        {
                            "name": self.configuration.cardlabel,
                            "value": body[:MAX_FIELD_VALUE_LENGTH],
                        }
                    ],
                }
            ],
        }

    async def send_message(self, title: str, body: str) -> dict[str, Any]:
        payload = self.build_payload(title, body)
        await send_http_request(self.provider_type, self.client, "POST", self.configuration.url, json=payload)
        logger.info(f"[discord] Sent notification: {sanitize_log_message(title)}")
        return payload
