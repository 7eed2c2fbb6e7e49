"""Backup and audit store contracts with in-memory implementations.

Persistence is owned by the host application; the engine only depends on
these protocols. The in-memory stores back the default wiring and tests.
"""

import logging
from typing import Dict, List, Protocol

from updatewatch.schemas.audit import AuditEntry
from updatewatch.schemas.backup import ImageBackup
from updatewatch.services.metrics import get_audit_counter

logger = logging.getLogger(__name__)


class BackupStore(Protocol):
    async def get_backups(self, container_id: str) -> List[ImageBackup]:
        """Return the backups of a container, newest first."""
        ...

    async def insert_backup(self, backup: ImageBackup) -> ImageBackup:
        ...

    async def prune_old_backups(self, container_id: str, keep: int) -> int:
        """Delete all but the ``keep`` newest backups; return the number deleted."""
        ...


class AuditStore(Protocol):
    async def insert_audit(self, entry: AuditEntry) -> AuditEntry:
        ...


class InMemoryBackupStore:
    """Backup store keeping entries in process memory."""

    def __init__(self) -> None:
        self._backups: Dict[str, List[ImageBackup]] = {}

    async def get_backups(self, container_id: str) -> List[ImageBackup]:
        backups = self._backups.get(container_id, [])
        return sorted(backups, key=lambda backup: backup.timestamp, reverse=True)

    async def insert_backup(self, backup: ImageBackup) -> ImageBackup:
        self._backups.setdefault(backup.container_id, []).append(backup)
        logger.debug(
            f"Stored backup {backup.image_reference} for container {backup.container_name}"
        )
        return backup

    async def prune_old_backups(self, container_id: str, keep: int) -> int:
        backups = await self.get_backups(container_id)
        kept = backups[: max(keep, 0)]
        self._backups[container_id] = kept
        return len(backups) - len(kept)


class InMemoryAuditStore:
    """Audit store keeping entries in process memory."""

    def __init__(self) -> None:
        self.entries: List[AuditEntry] = []

    async def insert_audit(self, entry: AuditEntry) -> AuditEntry:
        self.entries.append(entry)
        return entry


async def record_audit(audit_store: AuditStore, entry: AuditEntry) -> AuditEntry:
    """Insert an audit entry and count it by action."""
    await audit_store.insert_audit(entry)
    counter = get_audit_counter()
    if counter is not None:
        counter.labels(action=entry.action).inc()
    return entry
