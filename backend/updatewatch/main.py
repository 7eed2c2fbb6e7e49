"""UpdateWatch - update intelligence and notification dispatch engine."""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from updatewatch.configuration import (
    get_log_level,
    get_metrics_enabled,
    get_trigger_configurations,
    get_version,
)
from updatewatch.schemas.container import Container, ContainerReport
from updatewatch.services.event_bus import EventBus
from updatewatch.services.metrics import set_metrics_enabled
from updatewatch.services.report_publisher import publish_watch_cycle
from updatewatch.services.stores import (
    AuditStore,
    BackupStore,
    InMemoryAuditStore,
    InMemoryBackupStore,
)
from updatewatch.services.triggers.base import TriggerContext
from updatewatch.services.triggers.dispatcher import TriggerDispatcher

logger = logging.getLogger(__name__)


def configure_logging(env: Optional[Mapping[str, str]] = None) -> None:
    """Configure root logging from ``UW_LOG_LEVEL``."""
    logging.basicConfig(
        level=get_log_level(env),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class UpdateWatchEngine:
    """Wires configuration, event bus, triggers and scheduler together.

    The host application feeds watch cycle results through ``publish`` and
    persists what it needs through the store collaborators.
    """

    def __init__(
        self,
        env: Optional[Mapping[str, str]] = None,
        bus: Optional[EventBus] = None,
        backup_store: Optional[BackupStore] = None,
        audit_store: Optional[AuditStore] = None,
        docker_client: Any = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ) -> None:
        self.env = env
        self.bus = bus or EventBus()
        self.backup_store = backup_store or InMemoryBackupStore()
        self.audit_store = audit_store or InMemoryAuditStore()
        self.docker_client = docker_client
        self.scheduler = scheduler
        self.dispatcher: Optional[TriggerDispatcher] = None
        self._previous_by_id: Dict[str, Container] = {}

    @property
    def running(self) -> bool:
        return self.dispatcher is not None

    async def start(self) -> None:
        """Validate trigger configuration, register triggers and start the scheduler.

        Raises:
            TriggerConfigurationError: If a trigger configuration is invalid
            UnknownTriggerError: If a configured provider does not exist
        """
        if self.running:
            logger.warning("UpdateWatch engine already started")
            return

        logger.info(f"Starting UpdateWatch {get_version(self.env)}...")
        set_metrics_enabled(get_metrics_enabled(self.env))

        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler()

        dispatcher = TriggerDispatcher(
            TriggerContext(
                bus=self.bus,
                backup_store=self.backup_store,
                audit_store=self.audit_store,
                scheduler=self.scheduler,
                docker_client=self.docker_client,
            )
        )
        triggers = dispatcher.build(get_trigger_configurations(self.env))
        dispatcher.register_all()
        self.dispatcher = dispatcher
        logger.info(f"Registered {len(triggers)} trigger(s)")

        if not self.scheduler.running:
            self.scheduler.start()
        logger.info("UpdateWatch engine started")

    async def publish(self, containers: Sequence[Container]) -> List[ContainerReport]:
        """Publish the containers found by a watch cycle."""
        reports = await publish_watch_cycle(self.bus, containers, self._previous_by_id)
        self._previous_by_id = {container.id: container for container in containers}
        return reports

    async def stop(self) -> None:
        """Deregister triggers, stop the scheduler and clear bus registrations."""
        if self.dispatcher is not None:
            await self.dispatcher.deregister_all()
            self.dispatcher = None
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.bus.reset()
        logger.info("UpdateWatch engine stopped")
