"""Post-update health monitoring with automatic rollback.

After a Docker trigger recreates a container with rollback enabled, a
monitoring session polls the container health status for a limited window:

- no HEALTHCHECK defined: monitoring stops (``UNMONITORED``)
- ``unhealthy``: monitoring stops and the container is recreated from the
  latest backup image (``ROLLED_BACK_OK`` / ``ROLLED_BACK_FAILED``)
- window elapsed without an unhealthy observation: ``HEALTHY``

Both timers are APScheduler jobs owned by the session. ``cancel()`` removes
them exactly once; every terminal transition goes through the same guard.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol

from apscheduler.jobstores.base import JobLookupError

from updatewatch.exceptions import RollbackError
from updatewatch.schemas.audit import AuditEntry
from updatewatch.services.metrics import get_health_monitor_counter
from updatewatch.services.stores import AuditStore, BackupStore, record_audit
from updatewatch.utils.security import sanitize_log_message

if TYPE_CHECKING:
    from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)

ROLLBACK_DETAILS = "Automatic rollback triggered by health check failure"


class HealthMonitorState(str, Enum):
    POLLING = "polling"
    HEALTHY = "healthy"
    UNMONITORED = "unmonitored"
    ROLLED_BACK_OK = "rolled-back-ok"
    ROLLED_BACK_FAILED = "rolled-back-failed"
    CANCELLED = "cancelled"


class RollbackTarget(Protocol):
    """Container runtime primitives used to inspect and recreate a container."""

    async def get_current_container(self, container_ref: str) -> Any:
        ...

    async def inspect_container(self, current_container: Any) -> dict:
        ...

    async def stop_and_remove_container(
        self, current_container: Any, current_spec: dict, container_name: str
    ) -> None:
        ...

    async def recreate_container(
        self, current_spec: dict, new_image: str, container_name: str
    ) -> Any:
        ...


@dataclass
class HealthMonitorOptions:
    """Settings of one monitoring session.

    Attributes:
        scheduler: Scheduler running the poll and window jobs
        target: Runtime primitives (the Docker trigger)
        backup_store: Source of the rollback image
        audit_store: Receives ``auto-rollback`` entries
        container_id: Container id the backups are keyed by
        container_name: Container name, used for runtime lookups since
            recreation changes the container id
        updated_image_tag: Tag or digest the update moved the container to
        window: Observation window in milliseconds
        interval: Poll interval in milliseconds
        trigger_name: Trigger that applied the update
        on_finish: Called once with the session when it reaches a final state
    """

    scheduler: "AsyncIOScheduler"
    target: RollbackTarget
    backup_store: BackupStore
    audit_store: AuditStore
    container_id: str
    container_name: str
    updated_image_tag: str
    window: int
    interval: int
    trigger_name: Optional[str] = None
    on_finish: Optional[Callable[["HealthMonitorSession"], None]] = None


class HealthMonitorSession:
    """A running health monitor and its cancellation token."""

    def __init__(self, options: HealthMonitorOptions) -> None:
        self.options = options
        self.state = HealthMonitorState.POLLING
        self.stopped = False
        session_id = uuid.uuid4().hex[:12]
        self.poll_job_id = f"health_monitor_poll_{session_id}"
        self.window_job_id = f"health_monitor_window_{session_id}"

    def _schedule(self) -> None:
        scheduler = self.options.scheduler
        scheduler.add_job(
            self.poll,
            "interval",
            seconds=self.options.interval / 1000,
            id=self.poll_job_id,
            name=f"Health Monitor Poll ({self.options.container_name})",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self.on_window_expired,
            "date",
            run_date=datetime.now(timezone.utc) + timedelta(milliseconds=self.options.window),
            id=self.window_job_id,
            name=f"Health Monitor Window ({self.options.container_name})",
            replace_existing=True,
            misfire_grace_time=60,
        )

    def cancel(self) -> bool:
        """Stop monitoring.

        Returns:
            True if this call stopped the session, False if it was already stopped
        """
        if not self._stop():
            return False
        self._finish(HealthMonitorState.CANCELLED)
        return True

    def _stop(self) -> bool:
        if self.stopped:
            return False
        self.stopped = True
        for job_id in (self.poll_job_id, self.window_job_id):
            try:
                self.options.scheduler.remove_job(job_id)
            except JobLookupError:
                # Date jobs are removed by the scheduler once they ran
                pass
        return True

    def _finish(self, state: HealthMonitorState) -> None:
        self.state = state
        counter = get_health_monitor_counter()
        if counter is not None:
            counter.labels(state=state.value).inc()
        if self.options.on_finish is not None:
            self.options.on_finish(self)

    async def poll(self) -> None:
        """Inspect the container health once."""
        if self.stopped:
            return

        name = self.options.container_name
        try:
            current = await self.options.target.get_current_container(name)
            if current is None:
                raise RollbackError(f"Container {name} not found")
            inspection = await self.options.target.inspect_container(current)
        except Exception as e:
            # Inconclusive: keep polling
            logger.warning(
                f"Error inspecting container {name} during health monitoring: "
                f"{sanitize_log_message(str(e))}"
            )
            return

        health = (inspection.get("State") or {}).get("Health")
        if not health:
            if self._stop():
                logger.warning(f"Container {name} has no HEALTHCHECK defined, stopping health monitoring")
                self._finish(HealthMonitorState.UNMONITORED)
            return

        if health.get("Status") != "unhealthy":
            logger.debug(f"Container {name} health status: {health.get('Status')}")
            return

        # Cancelled while the inspection was in flight
        if not self._stop():
            return
        logger.warning(f"Container {name} became unhealthy, initiating automatic rollback")
        self._finish(await self._perform_rollback())

    async def on_window_expired(self) -> None:
        if not self._stop():
            return
        logger.info(
            f"Health monitoring window expired for container {self.options.container_name}, "
            f"container is healthy"
        )
        self._finish(HealthMonitorState.HEALTHY)

    async def _perform_rollback(self) -> HealthMonitorState:
        options = self.options
        name = options.container_name
        try:
            backups = await options.backup_store.get_backups(options.container_id)
            if not backups:
                raise RollbackError(f"No backups found for container {name}")
            latest_backup = backups[0]
            backup_image = latest_backup.image_reference

            current = await options.target.get_current_container(name)
            if current is None:
                raise RollbackError(f"Container {name} not found")
            current_spec = await options.target.inspect_container(current)

            logger.info(f"Auto-rollback: recreating container {name} from {backup_image}")
            await options.target.stop_and_remove_container(current, current_spec, name)
            await options.target.recreate_container(current_spec, backup_image, name)
        except Exception as e:
            logger.error(f"Auto-rollback failed for container {name}: {sanitize_log_message(str(e))}")
            await self._record_rollback_audit(
                AuditEntry(
                    action="auto-rollback",
                    container_name=name,
                    trigger_name=options.trigger_name,
                    status="error",
                    details=f"Auto-rollback failed: {e}",
                )
            )
            return HealthMonitorState.ROLLED_BACK_FAILED

        await self._record_rollback_audit(
            AuditEntry(
                action="auto-rollback",
                container_name=name,
                container_image=latest_backup.image_name,
                from_version=options.updated_image_tag,
                to_version=latest_backup.image_tag,
                trigger_name=options.trigger_name,
                status="success",
                details=ROLLBACK_DETAILS,
            )
        )
        logger.info(f"Auto-rollback of container {name} completed successfully")
        return HealthMonitorState.ROLLED_BACK_OK

    async def _record_rollback_audit(self, entry: AuditEntry) -> None:
        try:
            await record_audit(self.options.audit_store, entry)
        except Exception as e:
            logger.error(f"Failed to record auto-rollback audit entry: {sanitize_log_message(str(e))}")


def start_health_monitor(options: HealthMonitorOptions) -> HealthMonitorSession:
    """Start monitoring a freshly recreated container.

    Args:
        options: Session settings

    Returns:
        The session; call ``cancel()`` to stop monitoring
    """
    session = HealthMonitorSession(options)
    session._schedule()
    logger.info(
        f"Health monitoring started for container {options.container_name} "
        f"(window: {options.window}ms, interval: {options.interval}ms)"
    )
    return session
