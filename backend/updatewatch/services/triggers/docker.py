"""Docker trigger: pull the new image and recreate the container.

The current container configuration is read through ``inspect`` and replayed
on the new image, so labels, volumes, networks and restart policies survive
the update. The previous image reference is stored as a backup before
anything is touched; when rollback is enabled a health monitor watches the
recreated container and restores that backup if it turns unhealthy.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import docker
from docker.errors import NotFound

from updatewatch.exceptions import TriggerDeliveryError
from updatewatch.schemas.audit import AuditEntry
from updatewatch.schemas.backup import ImageBackup
from updatewatch.schemas.container import Container, ContainerImage
from updatewatch.schemas.trigger import DockerConfiguration
from updatewatch.services.stores import record_audit
from updatewatch.services.triggers.base import TriggerContext, TriggerProvider
from updatewatch.services.triggers.health_monitor import (
    HealthMonitorOptions,
    HealthMonitorSession,
    start_health_monitor,
)
from updatewatch.utils.error_handling import log_and_continue
from updatewatch.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

SELF_IMAGE_NAME = "updatewatch"
SELF_UPDATE_NOTICE_DELAY = 0.5  # seconds

ROLLBACK_AUTO_LABEL = "uw.rollback.auto"
ROLLBACK_WINDOW_LABEL = "uw.rollback.window"
ROLLBACK_INTERVAL_LABEL = "uw.rollback.interval"

PULL_PROGRESS_LOG_INTERVAL = 2.0  # seconds

DOCKER_HUB_HOSTS = {
    "docker.io",
    "index.docker.io",
    "registry-1.docker.io",
    "registry.hub.docker.com",
}


def image_repository(image: ContainerImage) -> str:
    """Return the pullable repository of an image (registry host + name).

    Docker Hub images are referenced by name only.
    """
    host = image.registry.url.split("://", 1)[-1].strip("/")
    if host.endswith("/v2"):
        host = host[: -len("/v2")]
    if not host or host in DOCKER_HUB_HOSTS:
        return image.name
    return f"{host}/{image.name}"


def image_full_name(image: ContainerImage, tag_or_digest: str) -> str:
    separator = "@" if tag_or_digest.startswith("sha256:") else ":"
    return f"{image_repository(image)}{separator}{tag_or_digest}"


def new_image_full_name(container: Container) -> str:
    """Image to pull: the remote tag, or the current tag for digest updates."""
    update_kind = container.update_kind
    if update_kind.kind == "digest" or not update_kind.remote_value:
        return image_full_name(container.image, container.image.tag.value)
    return image_full_name(container.image, update_kind.remote_value)


def is_self_update(container: Container) -> bool:
    name = container.image.name
    return name == SELF_IMAGE_NAME or name.endswith(f"/{SELF_IMAGE_NAME}")


def sanitize_endpoint_config(endpoint_config: Optional[dict], current_container_id: str) -> dict:
    """Keep the user-defined parts of a network endpoint.

    Runtime-assigned values (IP addresses, gateway, endpoint ids) are dropped,
    as is the short-id alias Docker adds for the old container.
    """
    if not endpoint_config:
        return {}

    sanitized: Dict[str, Any] = {}
    for key in ("IPAMConfig", "Links", "DriverOpts", "MacAddress"):
        if endpoint_config.get(key):
            sanitized[key] = endpoint_config[key]
    aliases = endpoint_config.get("Aliases") or []
    if aliases:
        sanitized["Aliases"] = [alias for alias in aliases if not current_container_id.startswith(alias)]
    return sanitized


def clone_container_config(current_spec: dict, new_image: str) -> Tuple[str, dict]:
    """Build a create payload replaying the inspected container on a new image.

    Returns:
        ``(container_name, create_config)``
    """
    container_name = current_spec["Name"].lstrip("/")
    networks = (current_spec.get("NetworkSettings") or {}).get("Networks") or {}
    endpoints = {
        network_name: sanitize_endpoint_config(endpoint_config, current_spec.get("Id", ""))
        for network_name, endpoint_config in networks.items()
    }

    config = {
        **(current_spec.get("Config") or {}),
        "Image": new_image,
        "HostConfig": current_spec.get("HostConfig"),
        "NetworkingConfig": {"EndpointsConfig": endpoints},
    }
    network_mode = (config["HostConfig"] or {}).get("NetworkMode") or ""
    if network_mode.startswith("container:"):
        # Shared network namespace: hostname and ports belong to the other container
        config.pop("Hostname", None)
        config.pop("ExposedPorts", None)
    return container_name, config


def primary_network_name(create_config: dict, network_names: List[str]) -> str:
    network_mode = (create_config.get("HostConfig") or {}).get("NetworkMode")
    if network_mode and network_mode in network_names:
        return network_mode
    return network_names[0]


def _links_to_dict(links: Optional[List[str]]) -> Optional[Dict[str, str]]:
    if not links:
        return None
    result = {}
    for link in links:
        source, _, alias = link.partition(":")
        result[source.lstrip("/")] = alias.rsplit("/", 1)[-1] if alias else ""
    return result


def format_pull_progress(event: dict) -> Optional[str]:
    detail = event.get("progressDetail") or {}
    current, total = detail.get("current"), detail.get("total")
    if isinstance(current, (int, float)) and isinstance(total, (int, float)) and total > 0:
        return f"{current}/{total} ({round(current * 100 / total)}%)"
    progress = event.get("progress")
    if isinstance(progress, str) and progress.strip():
        return progress
    return None


class DockerTrigger(TriggerProvider):
    """Update containers in place on the local Docker engine."""

    provider_type = "docker"
    configuration_schema = DockerConfiguration
    reports_failures = True

    def __init__(self, name: str, configuration: DockerConfiguration, context: TriggerContext) -> None:
        super().__init__(name, configuration, context)
        self._docker_client = context.docker_client
        self.health_monitors: Dict[str, HealthMonitorSession] = {}

    @property
    def docker_client(self) -> docker.DockerClient:
        if self._docker_client is None:
            self._docker_client = docker.from_env()
        return self._docker_client

    async def close(self) -> None:
        for session in list(self.health_monitors.values()):
            session.cancel()
        self.health_monitors.clear()

    # Runtime primitives, shared with the health monitor

    async def get_current_container(self, container_ref: str) -> Any:
        """Return the docker container for an id or name, or None if it does not exist."""
        logger.debug(f"[docker] Get container {container_ref}")
        try:
            return await asyncio.to_thread(self.docker_client.containers.get, container_ref)
        except NotFound:
            return None
        except docker.errors.DockerException as e:
            logger.warning(f"[docker] Error when getting container {container_ref}: {e}")
            raise

    async def inspect_container(self, current_container: Any) -> dict:
        logger.debug(f"[docker] Inspect container {current_container.id}")
        try:
            return await asyncio.to_thread(self.docker_client.api.inspect_container, current_container.id)
        except docker.errors.DockerException as e:
            logger.warning(f"[docker] Error when inspecting container {current_container.id}: {e}")
            raise

    async def pull_image(self, image: str) -> None:
        logger.info(f"[docker] Pull image {image}")
        try:
            await asyncio.to_thread(self._pull_image_sync, image)
        except docker.errors.DockerException as e:
            logger.warning(f"[docker] Error when pulling image {image} ({e})")
            raise
        logger.info(f"[docker] Image {image} pulled with success")

    def _pull_image_sync(self, image: str) -> None:
        last_log_at = 0.0
        event: dict = {}
        for event in self.docker_client.api.pull(image, stream=True, decode=True):
            if event.get("error"):
                raise TriggerDeliveryError(self.provider_type, f"Pull of {image} failed: {event['error']}")
            now = time.monotonic()
            if now - last_log_at < PULL_PROGRESS_LOG_INTERVAL:
                continue
            last_log_at = now
            logger.debug(f"[docker] Pull progress for {image}: {self._progress_snapshot(event)}")
        if event:
            logger.debug(f"[docker] Pull progress for {image}: {self._progress_snapshot(event)}")

    @staticmethod
    def _progress_snapshot(event: dict) -> str:
        status = event.get("status") or "progress"
        layer = f" layer={event['id']}" if event.get("id") else ""
        progress = format_pull_progress(event)
        return f"{status}{layer} {progress}" if progress else f"{status}{layer}"

    async def stop_and_remove_container(
        self, current_container: Any, current_spec: dict, container_name: str
    ) -> None:
        """Stop the container if running, then remove it (or wait for auto-removal)."""
        container_id = current_container.id
        if (current_spec.get("State") or {}).get("Running"):
            logger.info(f"[docker] Stop container {container_name} with id {container_id}")
            await asyncio.to_thread(current_container.stop)

        if (current_spec.get("HostConfig") or {}).get("AutoRemove") is not True:
            logger.info(f"[docker] Remove container {container_name} with id {container_id}")
            await asyncio.to_thread(current_container.remove)
        else:
            logger.info(f"[docker] Wait container {container_name} with id {container_id} auto-removal")
            await asyncio.to_thread(
                current_container.wait,
                condition="removed",
                timeout=self.configuration.autoremovetimeout / 1000,
            )

    async def recreate_container(self, current_spec: dict, new_image: str, container_name: str) -> str:
        """Create the container again on ``new_image``; start it if it was running.

        Returns:
            Id of the new container
        """
        name, create_config = clone_container_config(current_spec, new_image)
        endpoints = create_config["NetworkingConfig"]["EndpointsConfig"]
        additional_networks: List[str] = []
        if len(endpoints) > 1:
            # The engine only accepts one network at creation time
            primary = primary_network_name(create_config, list(endpoints))
            create_config["NetworkingConfig"] = {"EndpointsConfig": {primary: endpoints[primary]}}
            additional_networks = [network for network in endpoints if network != primary]

        logger.info(f"[docker] Create container {container_name}")
        created = await asyncio.to_thread(
            self.docker_client.api.create_container_from_config, create_config, name
        )
        new_container_id = created["Id"]

        for network_name in additional_networks:
            endpoint = endpoints[network_name]
            logger.info(f"[docker] Connect container {container_name} to network {network_name}")
            await asyncio.to_thread(
                self.docker_client.api.connect_container_to_network,
                new_container_id,
                network_name,
                aliases=endpoint.get("Aliases") or None,
                links=_links_to_dict(endpoint.get("Links")),
                driver_opt=endpoint.get("DriverOpts"),
            )

        if (current_spec.get("State") or {}).get("Running"):
            logger.info(f"[docker] Start container {container_name}")
            await asyncio.to_thread(self.docker_client.api.start, new_container_id)

        logger.info(f"[docker] Container {container_name} recreated on {new_image}")
        return new_container_id

    async def remove_image(self, image: str) -> None:
        logger.info(f"[docker] Remove image {image}")
        await asyncio.to_thread(self.docker_client.images.remove, image)

    async def cleanup_old_images(self, container: Container) -> None:
        """Remove the image the container ran before the update (``prune`` option)."""
        if not self.configuration.prune:
            return
        update_kind = container.update_kind
        if update_kind.kind == "tag":
            old_image = image_full_name(container.image, container.image.tag.value)
        elif update_kind.kind == "digest" and container.image.digest.repo:
            old_image = image_full_name(container.image, container.image.digest.repo)
        else:
            return
        try:
            await self.remove_image(old_image)
        except docker.errors.DockerException as e:
            log_and_continue(logger, e, f"[docker] Unable to remove previous image {old_image}")

    # Update flow

    async def trigger(self, container: Container) -> Any:
        try:
            return await self._update_container(container)
        except Exception as e:
            await self.context.bus.emit_container_update_failed(
                {"containerName": container.full_name, "triggerId": self.id, "error": str(e)}
            )
            raise

    async def trigger_batch(self, containers: Sequence[Container]) -> Any:
        return [await self.trigger(container) for container in containers]

    async def _update_container(self, container: Container) -> Optional[dict]:
        new_image = new_image_full_name(container)

        current_container = await self.get_current_container(container.id)
        if current_container is None:
            logger.warning(
                f"[docker] Unable to update container {sanitize_log_message(container.name)} "
                f"because it does not exist"
            )
            return None
        current_spec = await self.inspect_container(current_container)

        if is_self_update(container):
            logger.info("[docker] Self-update detected, notifying listeners before proceeding")
            self.context.bus.emit_self_update_starting({"containerName": container.full_name})
            await asyncio.sleep(SELF_UPDATE_NOTICE_DELAY)

        await self.context.backup_store.insert_backup(
            ImageBackup(
                container_id=container.id,
                container_name=container.name,
                image_name=image_repository(container.image),
                image_tag=container.image.tag.value,
                image_digest=container.image.digest.repo,
                trigger_name=self.id,
            )
        )

        await self.pull_image(new_image)

        if self.configuration.dryrun:
            logger.info(
                f"[docker] Dry-run mode enabled, container {container.name} is not replaced"
            )
            return {"containerName": container.full_name, "image": new_image, "dryrun": True}

        await self.stop_and_remove_container(current_container, current_spec, container.name)
        await self.recreate_container(current_spec, new_image, container.name)
        await self.cleanup_old_images(container)

        await self.context.bus.emit_container_update_applied(container.full_name)

        pruned = await self.context.backup_store.prune_old_backups(
            container.id, self.configuration.backupcount
        )
        if pruned:
            logger.info(f"[docker] Pruned {pruned} old backup(s) for {container.name}")

        update_kind = container.update_kind
        await record_audit(
            self.context.audit_store,
            AuditEntry(
                action="update-applied",
                container_name=container.name,
                container_image=container.image.name,
                from_version=update_kind.local_value,
                to_version=update_kind.remote_value,
                trigger_name=self.id,
                status="success",
            ),
        )

        self._maybe_start_health_monitor(container, update_kind.remote_value or container.image.tag.value)
        return {"containerName": container.full_name, "image": new_image, "dryrun": False}

    def _rollback_settings(self, container: Container) -> Tuple[bool, int, int]:
        """Return ``(enabled, window_ms, interval_ms)``, container labels taking precedence."""
        labels = container.labels or {}
        enabled = self.configuration.autorollback
        if ROLLBACK_AUTO_LABEL in labels:
            enabled = str(labels[ROLLBACK_AUTO_LABEL]).strip().lower() == "true"
        window = _label_int(labels, ROLLBACK_WINDOW_LABEL, self.configuration.rollbackwindow)
        interval = _label_int(labels, ROLLBACK_INTERVAL_LABEL, self.configuration.rollbackinterval)
        return enabled, window, interval

    def _maybe_start_health_monitor(self, container: Container, updated_tag: str) -> None:
        enabled, window, interval = self._rollback_settings(container)
        if not enabled:
            return
        if self.context.scheduler is None:
            logger.warning(
                f"[docker] Auto-rollback enabled for {container.name} but no scheduler is available"
            )
            return

        previous = self.health_monitors.pop(container.id, None)
        if previous is not None:
            previous.cancel()

        self.health_monitors[container.id] = start_health_monitor(
            HealthMonitorOptions(
                scheduler=self.context.scheduler,
                target=self,
                backup_store=self.context.backup_store,
                audit_store=self.context.audit_store,
                container_id=container.id,
                container_name=container.name,
                updated_image_tag=updated_tag,
                window=window,
                interval=interval,
                trigger_name=self.id,
                on_finish=lambda session: self._forget_health_monitor(container.id, session),
            )
        )

    def _forget_health_monitor(self, container_id: str, session: HealthMonitorSession) -> None:
        # A replaced session must not drop its successor
        if self.health_monitors.get(container_id) is session:
            del self.health_monitors[container_id]


def _label_int(labels: Dict[str, str], label: str, default: int) -> int:
    value = labels.get(label)
    if value is None:
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        logger.warning(f"[docker] Ignoring invalid {label} label value: {sanitize_log_message(value)}")
        return default
    return parsed if parsed > 0 else default
