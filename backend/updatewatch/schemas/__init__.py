"""Pydantic schemas for containers, backups, audit entries and triggers."""

from updatewatch.schemas.container import (
    Container,
    ContainerImage,
    ContainerReport,
    ContainerResult,
    ContainerUpdatePolicy,
    UpdateKind,
)
from updatewatch.schemas.backup import ImageBackup
from updatewatch.schemas.audit import AuditEntry
from updatewatch.schemas.trigger import SUPPORTED_THRESHOLDS, TriggerConfiguration

__all__ = [
    "Container",
    "ContainerImage",
    "ContainerReport",
    "ContainerResult",
    "ContainerUpdatePolicy",
    "UpdateKind",
    "ImageBackup",
    "AuditEntry",
    "SUPPORTED_THRESHOLDS",
    "TriggerConfiguration",
]
