"""Telegram trigger provider."""

import logging
import re
from typing import Any, Sequence

import httpx

from updatewatch.schemas.container import Container
from updatewatch.schemas.trigger import TelegramConfiguration
from updatewatch.services.triggers.base import (
    TriggerContext,
    TriggerProvider,
    compose_batch_message,
    compose_message,
    send_http_request,
)

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"

_MARKDOWN_SPECIAL_RE = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


def escape_markdown(text: str) -> str:
    """Escape MarkdownV2 special characters."""
    return _MARKDOWN_SPECIAL_RE.sub(r"\\\1", text)


class TelegramTrigger(TriggerProvider):
    """Telegram bot notification provider."""

    provider_type = "telegram"
    configuration_schema = TelegramConfiguration
    sensitive_fields = ("bottoken", "chatid")
    reentrant = True

    def __init__(self, name: str, configuration: TelegramConfiguration, context: TriggerContext) -> None:
        super().__init__(name, configuration, context)
        self.api_url = f"{TELEGRAM_API_URL}/bot{configuration.bottoken}"
        self.client = httpx.AsyncClient(timeout=10.0)

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    @property
    def is_markdown(self) -> bool:
        return self.configuration.messageformat == "markdown"

    def _bold(self, text: str) -> str:
        if self.is_markdown:
            return f"*{escape_markdown(text)}*"
        return f"<b>{text}</b>"

    def _body(self, text: str) -> str:
        return escape_markdown(text) if self.is_markdown else text

    async def trigger(self, container: Container) -> Any:
        return await self.send_message(
            compose_message(self.configuration, container, format_title=self._bold, format_body=self._body)
        )

    async def trigger_batch(self, containers: Sequence[Container]) -> Any:
        return await self.send_message(
            compose_batch_message(
                self.configuration, containers, format_title=self._bold, format_body=self._body
            )
        )

    async def send_message(self, text: str) -> Any:
        """Post a message to the configured chat."""
        response = await send_http_request(
            self.provider_type,
            self.client,
            "POST",
            f"{self.api_url}/sendMessage",
            json={
                "chat_id": self.configuration.chatid,
                "text": text,
                "parse_mode": "MarkdownV2" if self.is_markdown else "HTML",
            },
        )
        logger.info("[telegram] Sent notification")
        return response.json()
