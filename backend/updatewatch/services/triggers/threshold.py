"""Threshold evaluation and trigger references.

A threshold is the minimum severity an update must reach before a trigger
fires. The ``-only`` variants require an exact severity, ``digest`` accepts
digest updates only and the ``-no-digest`` suffix rejects digest updates.
"""

from typing import Any, Mapping, NamedTuple

from updatewatch.schemas.trigger import NON_DIGEST_SUFFIX, SUPPORTED_THRESHOLDS

SEVERITY_RANK = {
    "prerelease": 0,
    "patch": 1,
    "minor": 2,
    "major": 3,
}

_MINIMUM_SEVERITY_THRESHOLDS = ("major", "minor", "patch")
_EXACT_SEVERITY_THRESHOLDS = {
    "major-only": "major",
    "minor-only": "minor",
}


class TriggerReference(NamedTuple):
    """A ``name[:threshold]`` entry of a container's include/exclude list."""

    id: str
    threshold: str = "all"


def parse_threshold(threshold: str | None) -> tuple[str, bool]:
    """Split a threshold into its base and whether digest updates are rejected."""
    normalized = (threshold or "all").lower()
    if normalized.endswith(NON_DIGEST_SUFFIX):
        return normalized[: -len(NON_DIGEST_SUFFIX)], True
    return normalized, False


def _update_kind(container: Any) -> tuple[str | None, str | None]:
    if isinstance(container, Mapping):
        update_kind = container.get("updateKind") or {}
        return update_kind.get("kind"), update_kind.get("semverDiff")
    update_kind = container.update_kind
    return update_kind.kind, update_kind.semver_diff


def is_threshold_reached(container: Any, threshold: str | None) -> bool:
    """Return True if the container's update reaches the threshold.

    Args:
        container: Container model (or its template mapping)
        threshold: One of SUPPORTED_THRESHOLDS (case-insensitive)

    Returns:
        True when the trigger should fire for this update
    """
    threshold_base, rejects_digest = parse_threshold(threshold)
    kind, semver_diff = _update_kind(container)

    if rejects_digest and kind == "digest":
        return False
    if threshold_base == "digest":
        return kind == "digest"
    if threshold_base == "all":
        return True

    if kind == "tag" and semver_diff in SEVERITY_RANK:
        if threshold_base in _EXACT_SEVERITY_THRESHOLDS:
            return semver_diff == _EXACT_SEVERITY_THRESHOLDS[threshold_base]
        if threshold_base in _MINIMUM_SEVERITY_THRESHOLDS:
            return SEVERITY_RANK[semver_diff] >= SEVERITY_RANK[threshold_base]
    # Unknown severity and digest updates are not filtered
    return True


def parse_trigger_reference(reference: str) -> TriggerReference:
    """Parse a ``name[:threshold]`` trigger reference.

    An unsupported threshold, or more than one separator, falls back to ``all``.
    """
    trigger_id, separator, threshold = reference.partition(":")
    if not separator or ":" in threshold:
        return TriggerReference(id=trigger_id.strip())
    threshold = threshold.strip().lower()
    if threshold not in SUPPORTED_THRESHOLDS:
        threshold = "all"
    return TriggerReference(id=trigger_id.strip(), threshold=threshold)


def does_reference_match_id(reference: str, trigger_id: str) -> bool:
    """Return True when a reference designates the trigger.

    A reference matches the full id (``docker.update``), the trigger name alone
    (``update``) or ``provider.name`` (case-insensitive).
    """
    reference_normalized = reference.lower()
    trigger_id_normalized = trigger_id.lower()
    if reference_normalized == trigger_id_normalized:
        return True

    parts = trigger_id_normalized.split(".")
    trigger_name = parts[-1]
    if not trigger_name:
        return False
    if reference_normalized == trigger_name:
        return True
    if len(parts) >= 2 and reference_normalized == f"{parts[-2]}.{trigger_name}":
        return True
    return False


def split_trigger_list(value: str) -> list[str]:
    """Split a comma separated trigger list, dropping empty entries."""
    return [entry.strip() for entry in value.split(",") if entry.strip()]


def _matches_trigger_list(container: Any, trigger_list: str, trigger_id: str) -> bool:
    references = [parse_trigger_reference(entry) for entry in split_trigger_list(trigger_list)]
    for reference in references:
        if does_reference_match_id(reference.id, trigger_id):
            return is_threshold_reached(container, reference.threshold)
    return False


def is_trigger_included(container: Any, trigger_include: str | None, trigger_id: str) -> bool:
    if not trigger_include:
        return True
    return _matches_trigger_list(container, trigger_include, trigger_id)


def is_trigger_excluded(container: Any, trigger_exclude: str | None, trigger_id: str) -> bool:
    if not trigger_exclude:
        return False
    return _matches_trigger_list(container, trigger_exclude, trigger_id)
