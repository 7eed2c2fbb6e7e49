"""Trigger dispatcher: routes container reports to configured trigger instances."""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from updatewatch.exceptions import (
    SSRFProtectionError,
    TriggerConfigurationError,
    UnknownTriggerError,
)
from updatewatch.schemas.container import Container, ContainerReport
from updatewatch.schemas.trigger import TriggerConfiguration
from updatewatch.services.metrics import get_trigger_counter, get_trigger_duration
from updatewatch.services.trigger_config import resolve_trigger_configurations
from updatewatch.services.triggers.base import TriggerContext, TriggerProvider
from updatewatch.services.triggers.discord import DiscordTrigger
from updatewatch.services.triggers.docker import DockerTrigger
from updatewatch.services.triggers.email import SmtpTrigger
from updatewatch.services.triggers.gotify import GotifyTrigger
from updatewatch.services.triggers.ntfy import NtfyTrigger
from updatewatch.services.triggers.pushover import PushoverTrigger
from updatewatch.services.triggers.slack import SlackTrigger
from updatewatch.services.triggers.telegram import TelegramTrigger
from updatewatch.services.triggers.threshold import (
    is_threshold_reached,
    is_trigger_excluded,
    is_trigger_included,
)
from updatewatch.utils.error_handling import log_and_continue
from updatewatch.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

# Provider type to implementation
PROVIDERS: Dict[str, type[TriggerProvider]] = {
    "ntfy": NtfyTrigger,
    "gotify": GotifyTrigger,
    "pushover": PushoverTrigger,
    "slack": SlackTrigger,
    "discord": DiscordTrigger,
    "telegram": TelegramTrigger,
    "smtp": SmtpTrigger,
    "docker": DockerTrigger,
}


class TriggerInstance:
    """One configured trigger (``<provider>.<name>``) and its dispatch state."""

    def __init__(self, provider: TriggerProvider) -> None:
        self.provider = provider
        self._lock = None if provider.reentrant else asyncio.Lock()
        # Last remote value notified per container (``once`` option)
        self._notified: Dict[str, Optional[str]] = {}
        # Provider results kept for dismissal (``resolvenotifications`` option)
        self.notification_results: Dict[str, Any] = {}
        self._unregister: List[Callable[[], None]] = []

    @property
    def id(self) -> str:
        return self.provider.id

    @property
    def type(self) -> str:
        return self.provider.provider_type

    @property
    def name(self) -> str:
        return self.provider.name

    @property
    def configuration(self) -> TriggerConfiguration:
        return self.provider.configuration

    def is_eligible(self, report: ContainerReport) -> bool:
        """Return True if the report passes every filter of this trigger."""
        container = report.container
        if not container.update_available:
            return False

        if self.configuration.once:
            if not report.changed:
                return False
            update_kind = container.update_kind
            key = container.full_name
            if key in self._notified and self._notified[key] == update_kind.remote_value:
                logger.debug(f"Trigger {self.id}: {container.full_name} already notified => ignore")
                return False

        if not is_threshold_reached(container, self.configuration.threshold):
            logger.debug(f"Trigger {self.id}: threshold not reached for {container.full_name} => ignore")
            return False

        if not is_trigger_included(container, container.trigger_include, self.id) or is_trigger_excluded(
            container, container.trigger_exclude, self.id
        ):
            logger.debug(f"Trigger {self.id}: conditions not met for {container.full_name} => ignore")
            return False
        return True

    def _mark_notified(self, containers: Sequence[Container]) -> None:
        for container in containers:
            self._notified[container.full_name] = container.update_kind.remote_value

    async def _call_provider(self, method: Callable, argument: Any) -> Any:
        if self._lock is None:
            return await method(argument)
        async with self._lock:
            return await method(argument)

    def _count(self, status: str, started: float) -> None:
        counter = get_trigger_counter()
        if counter is not None:
            counter.labels(type=self.type, name=self.name, status=status).inc()
        duration = get_trigger_duration()
        if duration is not None:
            duration.labels(type=self.type).observe(time.monotonic() - started)

    async def _report_failure(self, container_names: Sequence[str], error: Exception) -> None:
        log_and_continue(logger, error, f"Trigger {self.id} failed")
        if self.provider.reports_failures:
            return
        for container_name in container_names:
            try:
                await self.provider.context.bus.emit_container_update_failed(
                    {"containerName": container_name, "triggerId": self.id, "error": str(error)}
                )
            except Exception as e:
                logger.error(
                    f"Error while reporting failure of trigger {self.id}: {sanitize_log_message(str(e))}",
                    exc_info=True,
                )

    async def handle_container_report(self, report: ContainerReport) -> None:
        """Run the trigger for one container report (simple mode)."""
        if not self.is_eligible(report):
            return

        container = report.container
        started = time.monotonic()
        logger.debug(f"Trigger {self.id}: run for {container.full_name}")
        try:
            result = await self._call_provider(self.provider.trigger, container)
        except Exception as e:
            self._count("error", started)
            await self._report_failure([container.full_name], e)
            return

        self._count("success", started)
        self._mark_notified([container])
        if self.configuration.resolvenotifications and result:
            self.notification_results[container.full_name] = result

    async def handle_container_reports(self, reports: Sequence[ContainerReport]) -> None:
        """Run the trigger once for every eligible report (batch mode)."""
        containers = [report.container for report in reports if self.is_eligible(report)]
        if not containers:
            return

        started = time.monotonic()
        logger.debug(f"Trigger {self.id}: run batch for {len(containers)} container(s)")
        try:
            await self._call_provider(self.provider.trigger_batch, containers)
        except Exception as e:
            self._count("error", started)
            await self._report_failure([container.full_name for container in containers], e)
            return

        self._count("success", started)
        self._mark_notified(containers)

    async def handle_container_update_applied(self, container_name: str) -> None:
        """Dismiss the stored notification of an updated container."""
        result = self.notification_results.pop(container_name, None)
        if not result:
            return
        logger.info(f"Trigger {self.id}: dismissing notification for {container_name}")
        try:
            await self.provider.dismiss(container_name, result)
        except Exception as e:
            log_and_continue(logger, e, f"Trigger {self.id}: error dismissing notification for {container_name}")

    def register(self) -> None:
        """Subscribe the instance to the bus according to its configuration."""
        bus = self.provider.context.bus
        configuration = self.configuration
        if configuration.auto:
            logger.info(f"Trigger {self.id}: registering for auto execution ({configuration.mode} mode)")
            if configuration.mode == "simple":
                self._unregister.append(
                    bus.register_container_report(
                        self.handle_container_report, order=configuration.order, id=self.id
                    )
                )
            else:
                self._unregister.append(
                    bus.register_container_reports(
                        self.handle_container_reports, order=configuration.order, id=self.id
                    )
                )
        else:
            logger.info(f"Trigger {self.id}: registering for manual execution")

        if configuration.resolvenotifications:
            self._unregister.append(
                bus.register_container_update_applied(
                    self.handle_container_update_applied, order=configuration.order, id=self.id
                )
            )

    def deregister(self) -> None:
        for unregister in self._unregister:
            unregister()
        self._unregister.clear()


class TriggerDispatcher:
    """Builds trigger instances from configuration and wires them to the bus."""

    def __init__(
        self,
        context: TriggerContext,
        providers: Optional[Mapping[str, type[TriggerProvider]]] = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            context: Collaborators shared by every provider
            providers: Provider registry (defaults to the built-in providers)
        """
        self.context = context
        self.providers = dict(providers or PROVIDERS)
        self.triggers: Dict[str, TriggerInstance] = {}

    def build(self, raw_configuration: Optional[Mapping[str, Any]]) -> Dict[str, TriggerInstance]:
        """Validate and instantiate every configured trigger.

        Args:
            raw_configuration: Trigger tree (``provider -> name -> settings``),
                possibly with provider-level shared keys and trigger groups

        Returns:
            Instances by id

        Raises:
            UnknownTriggerError: If a provider type is not registered
            TriggerConfigurationError: If an instance configuration is invalid
        """
        resolved = resolve_trigger_configurations(raw_configuration, self.providers.keys())
        for provider_type, instances in resolved.items():
            provider_class = self.providers.get(provider_type.lower())
            if provider_class is None:
                raise UnknownTriggerError(f"Unknown trigger provider: {provider_type}")
            if not isinstance(instances, Mapping):
                raise TriggerConfigurationError(provider_type, "expected a mapping of trigger names")

            for name, settings in instances.items():
                trigger_id = f"{provider_class.provider_type}.{name.lower()}"
                if not isinstance(settings, Mapping):
                    raise TriggerConfigurationError(trigger_id, "expected a mapping of settings")
                try:
                    configuration = provider_class.get_configuration_schema().model_validate(settings)
                    provider = provider_class(name.lower(), configuration, self.context)
                except ValidationError as e:
                    raise TriggerConfigurationError(trigger_id, str(e)) from e
                except (ValueError, SSRFProtectionError) as e:
                    raise TriggerConfigurationError(trigger_id, str(e)) from e

                instance = TriggerInstance(provider)
                self.triggers[instance.id] = instance
                logger.info(
                    f"Trigger {instance.id} configured: {provider.mask_configuration()}"
                )
        return self.triggers

    def register_all(self) -> None:
        for instance in sorted(self.triggers.values(), key=lambda trigger: trigger.id):
            instance.register()

    def get_triggers(self) -> Dict[str, TriggerInstance]:
        return dict(self.triggers)

    async def run_trigger(self, trigger_id: str, container: Container) -> Any:
        """Run one trigger manually, bypassing eligibility filters.

        Raises:
            UnknownTriggerError: If no trigger has this id
        """
        instance = self.triggers.get(trigger_id.lower())
        if instance is None:
            raise UnknownTriggerError(f"Unknown trigger: {trigger_id}")
        logger.info(f"Running trigger {instance.id} manually for {container.full_name}")
        return await instance._call_provider(instance.provider.trigger, container)

    async def deregister_all(self) -> None:
        """Unsubscribe every instance and release provider resources."""
        for instance in self.triggers.values():
            instance.deregister()
            try:
                await instance.provider.close()
            except Exception as e:
                log_and_continue(logger, e, f"Error closing trigger {instance.id}")
        self.triggers.clear()
