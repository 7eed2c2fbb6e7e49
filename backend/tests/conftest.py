"""Pytest configuration and fixtures."""

from typing import Any, Optional
from unittest.mock import MagicMock

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from updatewatch.schemas.container import Container
from updatewatch.services.event_bus import EventBus
from updatewatch.services.metrics import set_metrics_enabled
from updatewatch.services.stores import InMemoryAuditStore, InMemoryBackupStore
from updatewatch.services.triggers.base import TriggerContext


def build_container(
    container_id: str = "container-1",
    name: str = "nginx",
    watcher: str = "local",
    tag: str = "1.2.3",
    remote_tag: Optional[str] = "1.3.0",
    semver: bool = True,
    digest_watch: bool = False,
    local_digest: Optional[str] = None,
    remote_digest: Optional[str] = None,
    image_name: str = "library/nginx",
    registry_url: str = "https://registry-1.docker.io/v2",
    **extra: Any,
) -> Container:
    """Build a container snapshot; defaults describe a minor tag update."""
    result = None
    if remote_tag is not None or remote_digest is not None:
        result = {"tag": remote_tag, "digest": remote_digest}
    return Container(
        id=container_id,
        name=name,
        watcher=watcher,
        image={
            "registry": {"name": "hub", "url": registry_url},
            "name": image_name,
            "tag": {"value": tag, "semver": semver},
            "digest": {"watch": digest_watch, "value": local_digest},
        },
        result=result,
        **extra,
    )


@pytest.fixture
def make_container():
    """Factory fixture building Container models."""
    return build_container


@pytest.fixture
def bus():
    """Fresh event bus for each test."""
    return EventBus()


@pytest.fixture
def backup_store():
    return InMemoryBackupStore()


@pytest.fixture
def audit_store():
    return InMemoryAuditStore()


@pytest.fixture
def scheduler():
    """Create mock APScheduler."""
    mock_scheduler = MagicMock(spec=AsyncIOScheduler)
    mock_scheduler.add_job = MagicMock()
    mock_scheduler.remove_job = MagicMock()
    return mock_scheduler


@pytest.fixture
def docker_client():
    """Mock docker SDK client."""
    return MagicMock()


@pytest.fixture
def trigger_context(bus, backup_store, audit_store, scheduler, docker_client):
    """Collaborators shared by trigger providers under test."""
    return TriggerContext(
        bus=bus,
        backup_store=backup_store,
        audit_store=audit_store,
        scheduler=scheduler,
        docker_client=docker_client,
    )


@pytest.fixture(autouse=True)
def metrics_enabled():
    """Restore metric collection after tests that disable it."""
    set_metrics_enabled(True)
    yield
    set_metrics_enabled(True)
