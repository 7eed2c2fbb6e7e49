"""Pydantic schema for image backups kept for rollback."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import Field

from updatewatch.schemas.container import CamelModel


class ImageBackup(CamelModel):
    """A previously running image reference for a container."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    container_id: str
    container_name: str
    image_name: str
    image_tag: str
    image_digest: Optional[str] = None
    trigger_name: str

    @property
    def image_reference(self) -> str:
        """Image reference used to recreate the container (``name:tag``)."""
        return f"{self.image_name}:{self.image_tag}"
