"""Pydantic schema for audit log entries."""

import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import Field

from updatewatch.schemas.container import CamelModel

AuditStatus = Literal["success", "error", "info"]


class AuditEntry(CamelModel):
    """Audit record for an action taken on a container."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    action: str
    container_name: str
    container_image: Optional[str] = None
    from_version: Optional[str] = None
    to_version: Optional[str] = None
    trigger_name: Optional[str] = None
    status: AuditStatus
    details: Optional[str] = None
