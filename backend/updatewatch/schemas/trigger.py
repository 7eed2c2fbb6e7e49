"""Pydantic schemas for trigger instance configuration.

Configuration keys are lower-case because they come straight from the
environment tree (``UW_TRIGGER_<PROVIDER>_<NAME>_<KEY>``). Every model is
frozen: a trigger's configuration never changes after startup.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from updatewatch.services.template_renderer import (
    DEFAULT_BATCH_TITLE,
    DEFAULT_SIMPLE_BODY,
    DEFAULT_SIMPLE_TITLE,
)

NON_DIGEST_SUFFIX = "-no-digest"

SUPPORTED_THRESHOLDS = (
    "all",
    "major",
    "minor",
    "patch",
    "major-only",
    "minor-only",
    "digest",
    "major-no-digest",
    "minor-no-digest",
    "patch-no-digest",
    "major-only-no-digest",
    "minor-only-no-digest",
)

TriggerMode = Literal["simple", "batch"]


class TriggerConfiguration(BaseModel):
    """Settings shared by every trigger provider."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    auto: bool = True
    order: int = 100
    threshold: str = "all"
    mode: TriggerMode = "simple"
    once: bool = True
    disabletitle: bool = False
    simpletitle: str = DEFAULT_SIMPLE_TITLE
    simplebody: str = DEFAULT_SIMPLE_BODY
    batchtitle: str = DEFAULT_BATCH_TITLE
    resolvenotifications: bool = False

    @field_validator("threshold", mode="before")
    @classmethod
    def validate_threshold(cls, v):
        """Normalize the threshold and reject unsupported values."""
        threshold = str(v).strip().lower()
        if threshold not in SUPPORTED_THRESHOLDS:
            raise ValueError(
                f"Unsupported threshold '{v}' (supported: {', '.join(SUPPORTED_THRESHOLDS)})"
            )
        return threshold

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v):
        return str(v).strip().lower()


class NtfyAuth(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    user: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None


class NtfyConfiguration(TriggerConfiguration):
    url: str = "https://ntfy.sh"
    topic: str
    priority: Optional[int] = Field(default=None, ge=0, le=5)
    auth: Optional[NtfyAuth] = None


class GotifyConfiguration(TriggerConfiguration):
    url: str
    token: str
    priority: Optional[int] = Field(default=None, ge=0)


class PushoverConfiguration(TriggerConfiguration):
    user: str
    token: str
    device: Optional[str] = None
    sound: str = "pushover"
    priority: int = Field(default=0, ge=-2, le=2)
    html: int = Field(default=0, ge=0, le=1)
    retry: Optional[int] = Field(default=None, ge=30)
    expire: Optional[int] = Field(default=None, ge=1, le=10800)

    @model_validator(mode="after")
    def require_emergency_settings(self) -> "PushoverConfiguration":
        # Emergency priority needs both retry and expire
        if self.priority == 2 and (self.retry is None or self.expire is None):
            raise ValueError("retry and expire are required when priority is 2")
        return self


class SlackConfiguration(TriggerConfiguration):
    token: str
    channel: str


class DiscordConfiguration(TriggerConfiguration):
    url: str
    botusername: str = "UpdateWatch"
    cardcolor: int = 65280
    cardlabel: str = ""


class TelegramConfiguration(TriggerConfiguration):
    bottoken: str
    chatid: str
    messageformat: Literal["markdown", "html"] = "markdown"

    @field_validator("messageformat", mode="before")
    @classmethod
    def normalize_message_format(cls, v):
        return str(v).strip().lower()


class SmtpTls(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = False
    verify: bool = True


class SmtpConfiguration(TriggerConfiguration):
    host: str
    port: int = Field(ge=1, le=65535)
    user: Optional[str] = None
    pass_: Optional[str] = Field(default=None, alias="pass")
    from_: str = Field(alias="from")
    to: str
    tls: SmtpTls = Field(default_factory=SmtpTls)

    @field_validator("from_", "to")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Require a plausible email address (local@domain)."""
        local, _, domain = v.rpartition("@")
        if not local or not domain or " " in v:
            raise ValueError(f"Invalid email address: {v}")
        return v


class DockerConfiguration(TriggerConfiguration):
    prune: bool = False
    dryrun: bool = False
    autoremovetimeout: int = Field(default=10_000, ge=0)
    backupcount: int = Field(default=3, ge=1)
    autorollback: bool = False
    rollbackwindow: int = Field(default=300_000, gt=0)
    rollbackinterval: int = Field(default=10_000, gt=0)

    @model_validator(mode="after")
    def validate_rollback_timing(self) -> "DockerConfiguration":
        if self.rollbackinterval > self.rollbackwindow:
            raise ValueError("rollbackinterval must not exceed rollbackwindow")
        return self
