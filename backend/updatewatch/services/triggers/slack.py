"""Slack trigger provider (Web API with a bot token)."""

import logging
from typing import Any, Sequence

import httpx

from updatewatch.exceptions import TriggerDeliveryError
from updatewatch.schemas.container import Container
from updatewatch.schemas.trigger import SlackConfiguration
from updatewatch.services.triggers.base import (
    TriggerContext,
    TriggerProvider,
    compose_batch_message,
    compose_message,
    send_http_request,
)
from updatewatch.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api"


class SlackTrigger(TriggerProvider):
    """Slack notification provider.

    Messages are posted with ``chat.postMessage``; when resolvenotifications is
    enabled, ``dismiss`` deletes the posted message once the update is applied.
    """

    provider_type = "slack"
    configuration_schema = SlackConfiguration
    sensitive_fields = ("token",)
    reentrant = True

    def __init__(self, name: str, configuration: SlackConfiguration, context: TriggerContext) -> None:
        super().__init__(name, configuration, context)
        self.client = httpx.AsyncClient(
            timeout=10.0,
            headers={"Authorization": f"Bearer {configuration.token}"},
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    @staticmethod
    def _bold(title: str) -> str:
        return f"*{title}*"

    async def trigger(self, container: Container) -> Any:
        return await self.send_message(
            compose_message(self.configuration, container, format_title=self._bold)
        )

    async def trigger_batch(self, containers: Sequence[Container]) -> Any:
        return await self.send_message(
            compose_batch_message(self.configuration, containers, format_title=self._bold)
        )

    async def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await send_http_request(
            self.provider_type, self.client, "POST", f"{SLACK_API_URL}/{method}", json=payload
        )
        data = response.json()
        # The Web API reports failures in the body of a 200 response
        if not data.get("ok"):
            error = sanitize_log_message(data.get("error", "unknown error"))
            logger.error(f"[slack] {method} failed: {error}")
            raise TriggerDeliveryError(self.provider_type, f"{method} failed: {error}", response=response)
        return data

    async def send_message(self, text: str) -> dict[str, Any]:
        """Post a message to the configured channel."""
        data = await self._call("chat.postMessage", {"channel": self.configuration.channel, "text": text})
        logger.info(f"[slack] Sent notification to {sanitize_log_message(self.configuration.channel)}")
        return data

    async def dismiss(self, container_id: str, result: Any) -> None:
        """Delete the message posted for a container."""
        if not isinstance(result, dict) or not result.get("ts"):
            return
        await self._call(
            "chat.delete",
            {"channel": result.get("channel", self.configuration.channel), "ts": result["ts"]},
        )
        logger.info(f"[slack] Dismissed notification for {sanitize_log_message(container_id)}")
