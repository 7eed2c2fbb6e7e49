"""ntfy trigger provider."""

import logging
from typing import Any, Sequence

import httpx

from updatewatch.schemas.container import Container
from updatewatch.schemas.trigger import NtfyConfiguration
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


class NtfyTrigger(TriggerProvider):
    """ntfy push notification provider (JSON publishing)."""

    provider_type = "ntfy"
    configuration_schema = NtfyConfiguration
    sensitive_fields = ("auth.user", "auth.password", "auth.token")
    reentrant = True

    def __init__(self, name: str, configuration: NtfyConfiguration, context: TriggerContext) -> None:
        """Initialize ntfy provider.

        Raises:
            SSRFProtectionError: If the server URL uses a forbidden scheme
        """
        super().__init__(name, configuration, context)
        # Self-hosted ntfy instances usually live on private networks
        validate_provider_url(configuration.url, block_private_ips=False)

        auth = None
        headers = {}
        if configuration.auth and configuration.auth.token:
            headers["Authorization"] = f"Bearer {configuration.auth.token}"
        elif configuration.auth and configuration.auth.user and configuration.auth.password:
            auth = httpx.BasicAuth(configuration.auth.user, configuration.auth.password)

        self.client = httpx.AsyncClient(timeout=10.0, headers=headers, auth=auth)

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    async def trigger(self, container: Container) -> Any:
        return await self._publish(
            render_simple_title(self.configuration, container),
            render_simple_body(self.configuration, container),
        )

    async def trigger_batch(self, containers: Sequence[Container]) -> Any:
        return await self._publish(
            render_batch_title(self.configuration, containers),
            render_batch_body(self.configuration, containers),
        )

    async def _publish(self, title: str, message: str) -> Any:
        payload: dict[str, Any] = {
            "topic": self.configuration.topic,
            "title": title,
            "message": message,
        }
        if self.configuration.priority is not None:
            payload["priority"] = self.configuration.priority

        response = await send_http_request(
            self.provider_type, self.client, "POST", self.configuration.url, json=payload
        )
        logger.info(f"[ntfy] Sent notification: {sanitize_log_message(title)}")
        return response.json()
