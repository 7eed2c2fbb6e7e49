"""Trigger provider interface and shared message helpers."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Optional, Sequence

import httpx
from pydantic import BaseModel

from updatewatch.exceptions import TriggerDeliveryError, UnsupportedTriggerModeError
from updatewatch.schemas.container import Container
from updatewatch.schemas.trigger import TriggerConfiguration
from updatewatch.services.event_bus import EventBus
from updatewatch.services.stores import (
    AuditStore,
    BackupStore,
    InMemoryAuditStore,
    InMemoryBackupStore,
)
from updatewatch.services.template_renderer import render_batch, render_simple
from updatewatch.utils.security import mask, sanitize_log_message

if TYPE_CHECKING:
    from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)


@dataclass
class TriggerContext:
    """Collaborators handed to every trigger provider."""

    bus: EventBus
    backup_store: BackupStore = field(default_factory=InMemoryBackupStore)
    audit_store: AuditStore = field(default_factory=InMemoryAuditStore)
    scheduler: Optional["AsyncIOScheduler"] = None
    docker_client: Any = None


class TriggerProvider(ABC):
    """Interface implemented by every trigger provider.

    A provider instance is bound to one trigger (``<provider_type>.<name>``)
    and its validated configuration. Delivery failures raise; the dispatcher
    catches, counts and reports them.
    """

    # Provider identifier used in configuration keys and logging
    provider_type: str = "base"
    configuration_schema: type[TriggerConfiguration] = TriggerConfiguration
    # Configuration fields masked when the configuration is exposed
    sensitive_fields: tuple[str, ...] = ()
    # Providers that are not safe to call concurrently get serialized
    reentrant: bool = False
    # Providers emitting their own container-update-failed events
    reports_failures: bool = False

    def __init__(
        self,
        name: str,
        configuration: TriggerConfiguration,
        context: TriggerContext,
    ) -> None:
        self.name = name
        self.configuration = configuration
        self.context = context

    @property
    def id(self) -> str:
        return f"{self.provider_type}.{self.name}"

    @classmethod
    def get_configuration_schema(cls) -> type[TriggerConfiguration]:
        """Return the pydantic model validating this provider's configuration."""
        return cls.configuration_schema

    def mask_configuration(self, configuration: Optional[TriggerConfiguration] = None) -> dict:
        """Return the configuration with secrets masked."""
        return mask_fields(configuration or self.configuration, self.sensitive_fields)

    @abstractmethod
    async def trigger(self, container: Container) -> Any:
        """Notify about (or act on) a single container update.

        Returns:
            Provider result, kept for ``dismiss`` when resolvenotifications is set
        """
        pass

    async def trigger_batch(self, containers: Sequence[Container]) -> Any:
        """Notify about several container updates at once.

        Raises:
            UnsupportedTriggerModeError: If the provider has no batch concept
        """
        raise UnsupportedTriggerModeError(self.provider_type, "batch")

    async def dismiss(self, container_id: str, result: Any) -> None:
        """Withdraw a previously sent notification (no-op by default)."""
        return None

    async def close(self) -> None:
        """Clean up resources (close HTTP clients, etc.)."""
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False


async def send_http_request(
    provider_type: str,
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request for a provider and raise TriggerDeliveryError on failure.

    Args:
        provider_type: Provider identifier used in logs and errors
        client: Provider HTTP client
        method: HTTP method
        url: Target URL
        **kwargs: Forwarded to ``client.request``

    Returns:
        The successful response

    Raises:
        TriggerDeliveryError: On HTTP error status, connection failure or timeout
    """
    try:
        response = await client.request(method, url, **kwargs)
        response.raise_for_status()
        return response
    except httpx.HTTPStatusError as e:
        # The request URL may embed credentials (bot tokens), so it is never logged
        logger.error(f"[{provider_type}] HTTP error: {e.response.status_code} {e.response.reason_phrase}")
        raise TriggerDeliveryError(
            provider_type, f"HTTP {e.response.status_code}", response=e.response
        ) from e
    except (httpx.ConnectError, httpx.TimeoutException) as e:
        logger.error(f"[{provider_type}] Connection error: {sanitize_log_message(str(e))}")
        raise TriggerDeliveryError(provider_type, f"Connection error: {e}") from e
    except httpx.HTTPError as e:
        logger.error(f"[{provider_type}] Request failed: {sanitize_log_message(str(e))}")
        raise TriggerDeliveryError(provider_type, f"Request failed: {e}") from e


def mask_fields(configuration: BaseModel | Mapping[str, Any], fields: Iterable[str]) -> dict:
    """Dump a configuration and mask the given (dotted) fields.

    Args:
        configuration: Configuration model or mapping
        fields: Field names to mask; ``auth.token`` masks a nested field

    Returns:
        Plain dict safe to log or expose
    """
    if isinstance(configuration, BaseModel):
        masked = configuration.model_dump(by_alias=True)
    else:
        masked = dict(configuration)

    for field_path in fields:
        *parents, leaf = field_path.split(".")
        target: Any = masked
        for parent in parents:
            target = target.get(parent) if isinstance(target, dict) else None
        if isinstance(target, dict) and target.get(leaf):
            target[leaf] = mask(target[leaf])
    return masked


def render_simple_title(configuration: TriggerConfiguration, container: Container) -> str:
    return render_simple(configuration.simpletitle, container)


def render_simple_body(configuration: TriggerConfiguration, container: Container) -> str:
    return render_simple(configuration.simplebody, container)


def render_batch_title(configuration: TriggerConfiguration, containers: Sequence[Container]) -> str:
    return render_batch(configuration.batchtitle, containers)


def render_batch_body(configuration: TriggerConfiguration, containers: Sequence[Container]) -> str:
    """Render one ``- <simplebody>`` line per container."""
    return "\n".join(
        f"- {render_simple_body(configuration, container)}\n" for container in containers
    )


def _plain(text: str) -> str:
    return text


def format_title_and_body(
    configuration: TriggerConfiguration,
    title: Callable[[], str],
    body: str,
    format_title: Callable[[str], str] = _plain,
    format_body: Callable[[str], str] = _plain,
) -> str:
    """Join a rendered title and body, dropping the title when disabletitle is set.

    Args:
        configuration: Trigger configuration
        title: Renders the title; only called when the title is shown
        body: Rendered body
        format_title: Provider markup applied to the title (e.g. bold)
        format_body: Provider markup applied to the body (e.g. escaping)
    """
    if configuration.disabletitle:
        return format_body(body)
    return f"{format_title(title())}\n\n{format_body(body)}"


def compose_message(
    configuration: TriggerConfiguration,
    container: Container,
    format_title: Callable[[str], str] = _plain,
    format_body: Callable[[str], str] = _plain,
) -> str:
    """Render title and body for one container as a single message."""
    return format_title_and_body(
        configuration,
        lambda: render_simple_title(configuration, container),
        render_simple_body(configuration, container),
        format_title,
        format_body,
    )


def compose_batch_message(
    configuration: TriggerConfiguration,
    containers: Sequence[Container],
    format_title: Callable[[str], str] = _plain,
    format_body: Callable[[str], str] = _plain,
) -> str:
    """Render title and body for several containers as a single message."""
    return format_title_and_body(
        configuration,
        lambda: render_batch_title(configuration, containers),
        render_batch_body(configuration, containers),
        format_title,
        format_body,
    )
