"""Gotify trigger provider."""

import logging
from typing import Any, Sequence

import httpx

from updatewatch.schemas.container import Container
from updatewatch.schemas.trigger import GotifyConfiguration
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


class GotifyTrigger(TriggerProvider):
    """Gotify push notification provider."""

    provider_type = "gotify"
    configuration_schema = GotifyConfiguration
    sensitive_fields = ("token",)
    reentrant = True

    def __init__(self, name: str, configuration: GotifyConfiguration, context: TriggerContext) -> None:
        super().__init__(name, configuration, context)
        # Gotify is self-hosted; private addresses are expected
        validate_provider_url(configuration.url, block_private_ips=False)
        self.server_url = configuration.url.rstrip("/")
        self.client = httpx.AsyncClient(
            timeout=10.0,
            headers={"X-Gotify-Key": configuration.token},
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    async def trigger(self, container: Container) -> Any:
        return await self._create_message(
            render_simple_title(self.configuration, container),
            render_simple_body(self.configuration, container),
        )

    async def trigger_batch(self, containers: Sequence[Container]) -> Any:
        return await self._create_message(
            render_batch_title(self.configuration, containers),
            render_batch_body(self.configuration, containers),
        )

    async def _create_message(self, title: str, message: str) -> Any:
        payload: dict[str, Any] = {"title": title, "message": message}
        if self.configuration.priority is not None:
            payload["priority"] = self.configuration.priority

        response = await send_http_request(
            self.provider_type, self.client, "POST", f"{self.server_url}/message", json=payload
        )
        logger.info(f"[gotify] Sent notification: {sanitize_log_message(title)}")
        return response.json()
