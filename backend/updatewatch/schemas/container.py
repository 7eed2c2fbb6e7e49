"""Pydantic schemas for watched containers and their update state."""

import re
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator
from pydantic.alias_generators import to_camel

from updatewatch.utils.version import diff, parse, transform

UpdateKindName = Literal["tag", "digest", "unknown"]
SemverDiff = Literal["major", "minor", "patch", "prerelease", "unknown"]

_LINK_VARIABLE_RE = re.compile(r"\$\{(\w+)\}")


class CamelModel(BaseModel):
    """Base model serialised with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ContainerRegistry(CamelModel):
    name: str
    url: str = ""


class ContainerImageTag(CamelModel):
    value: str
    semver: bool = False


class ContainerImageDigest(CamelModel):
    watch: bool = False
    value: Optional[str] = None
    repo: Optional[str] = None


class ContainerImage(CamelModel):
    """Image currently running in the container."""

    id: str = ""
    registry: ContainerRegistry
    name: str
    tag: ContainerImageTag
    digest: ContainerImageDigest = Field(default_factory=ContainerImageDigest)
    architecture: str = "amd64"
    os: str = "linux"
    variant: Optional[str] = None
    created: Optional[str] = None


class ContainerResult(CamelModel):
    """Latest image reference found in the registry."""

    tag: Optional[str] = None
    digest: Optional[str] = None
    created: Optional[str] = None


class ContainerUpdatePolicy(CamelModel):
    skip_tags: List[str] = Field(default_factory=list)
    skip_digests: List[str] = Field(default_factory=list)
    snooze_until: Optional[datetime] = None


class ContainerError(CamelModel):
    message: str


class UpdateKind(CamelModel):
    """Classification of a detected update."""

    kind: UpdateKindName = "unknown"
    local_value: Optional[str] = None
    remote_value: Optional[str] = None
    semver_diff: SemverDiff = "unknown"


class Container(CamelModel):
    """A watched container with its latest registry result.

    ``update_kind``, ``update_available`` and ``link`` are recomputed from the
    snapshot on every access.
    """

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    display_name: Optional[str] = None
    status: str = "unknown"
    watcher: str = Field(min_length=1)
    agent: Optional[str] = None
    transform_tags: Optional[str] = None
    link_template: Optional[str] = None
    trigger_include: Optional[str] = None
    trigger_exclude: Optional[str] = None
    update_policy: Optional[ContainerUpdatePolicy] = None
    image: ContainerImage
    result: Optional[ContainerResult] = None
    error: Optional[ContainerError] = None
    labels: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def default_display_name(self) -> "Container":
        if not self.display_name:
            self.display_name = self.name
        return self

    @property
    def full_name(self) -> str:
        """Business id of the container (``<watcher>_<name>``)."""
        return f"{self.watcher}_{self.name}"

    def _watches_digest(self) -> bool:
        return bool(
            self.result is not None
            and self.image.digest.watch
            and self.image.digest.value is not None
            and self.result.digest is not None
        )

    def _transformed(self, tag: Optional[str]) -> Optional[str]:
        if tag is None:
            return None
        return transform(self.transform_tags, tag)


    def _raw_update_kind(self) -> UpdateKind:
        if self.result is None:
            return UpdateKind()

        if self._watches_digest():
            if self.image.digest.value != self.result.digest:
                return UpdateKind(
                    kind="digest",
                    local_value=self.image.digest.value,
                    remote_value=self.result.digest,
                )
            return UpdateKind()

        if self.result.tag is None:
            return UpdateKind()
        local_tag = self._transformed(self.image.tag.value)
        remote_tag = self._transformed(self.result.tag)
        # Same tag (a rebuilt image at most): not an update
        if local_tag == remote_tag:
            return UpdateKind()

        semver_diff = "unknown"
        if self.image.tag.semver:
            semver_diff = diff(local_tag, remote_tag) or "unknown"
        return UpdateKind(
            kind="tag",
            local_value=self.image.tag.value,
            remote_value=self.result.tag,
            semver_diff=semver_diff,
        )

    def _is_update_suppressed(self, update_kind: UpdateKind) -> bool:
        policy = self.update_policy
        if policy is None:
            return False

        if policy.snooze_until is not None:
            snooze_until = policy.snooze_until
            if snooze_until.tzinfo is None:
                snooze_until = snooze_until.replace(tzinfo=timezone.utc)
            if snooze_until > datetime.now(timezone.utc):
                return True

        if update_kind.kind == "tag" and update_kind.remote_value:
            return update_kind.remote_value in policy.skip_tags
        if update_kind.kind == "digest" and update_kind.remote_value:
            return update_kind.remote_value in policy.skip_digests
        return False

    @computed_field(alias="updateKind")
    @property
    def update_kind(self) -> UpdateKind:
        return self._raw_update_kind()

    @computed_field(alias="updateAvailable")
    @property
    def update_available(self) -> bool:
        update_kind = self._raw_update_kind()
        if update_kind.kind == "unknown":
            return False
        return not self._is_update_suppressed(update_kind)

    def _render_link(self, original_tag: str) -> Optional[str]:
        if not self.link_template:
            return None

        transformed = transform(self.transform_tags, original_tag) if self.transform_tags else original_tag
        variables = {
            "raw": original_tag,
            "original": original_tag,
            "transformed": transformed,
            "major": "",
            "minor": "",
            "patch": "",
            "prerelease": "",
        }
        if self.image.tag.semver:
            version = parse(transformed)
            if version is not None:
                variables["major"] = str(version.major)
                variables["minor"] = str(version.minor)
                variables["patch"] = str(version.patch)
                variables["prerelease"] = str(version.prerelease[0]) if version.prerelease else ""

        return _LINK_VARIABLE_RE.sub(lambda match: variables.get(match.group(1), ""), self.link_template)

    @computed_field
    @property
    def link(self) -> Optional[str]:
        """Link rendered for the running tag."""
        return self._render_link(self.image.tag.value)

    @property
    def result_link(self) -> Optional[str]:
        """Link rendered for the remote tag."""
        if self.result is None:
            return None
        return self._render_link(self.result.tag or "")

    def result_changed(self, other: Optional["Container"]) -> bool:
        """Return True when the registry result differs from another snapshot."""
        if other is None:
            return True
        mine = self.result or ContainerResult()
        theirs = other.result or ContainerResult()
        return (
            mine.tag != theirs.tag
            or mine.digest != theirs.digest
            or mine.created != theirs.created
        )

    def to_template_dict(self) -> dict:
        """Dump the container as the plain mapping seen by notification templates."""
        data = self.model_dump(by_alias=True, mode="json")
        if data.get("result") is not None and self.link_template:
            data["result"]["link"] = self.result_link
        return data


class ContainerReport(BaseModel):
    """A container snapshot published once per watch cycle."""

    container: Container
    changed: bool
