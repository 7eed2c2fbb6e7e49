"""Resolution of shared trigger configuration.

The raw trigger tree is ``provider -> trigger name -> settings``. Three kinds of
defaults fill in settings an instance does not set explicitly, in this
precedence order (highest first):

1. explicit instance settings
2. trigger groups: top-level entries that are not provider names and only hold
   shared keys (``UW_TRIGGER_UPDATES_THRESHOLD=minor`` applies to every
   trigger named ``updates``)
3. provider-level shared keys (``UW_TRIGGER_NTFY_THRESHOLD=minor``)
4. values inferred across providers: a shared key set to exactly one distinct
   value by same-named triggers becomes the default for the others

A top-level key matching a known provider name is always a provider, even when
shaped like a trigger group.

Every function is pure: inputs are never mutated.
"""

import logging
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)

SHARED_TRIGGER_CONFIGURATION_KEYS = ("threshold", "once", "mode", "order")

GroupDetectedCallback = Callable[[str, Mapping[str, Any]], None]


def _is_record(value: Any) -> bool:
    return isinstance(value, Mapping)


def _is_shared_key(key: str) -> bool:
    return key.lower() in SHARED_TRIGGER_CONFIGURATION_KEYS


def _hashable(value: Any) -> Any:
    # Shared values are normally scalars; containers are compared by content
    if isinstance(value, list):
        return ("__list__", tuple(_hashable(item) for item in value))
    if _is_record(value):
        return ("__map__", tuple(sorted((str(k), _hashable(v)) for k, v in value.items())))
    return value


def _apply_provider_shared_configuration(configurations: Mapping[str, Any]) -> Dict[str, Any]:
    normalized: Dict[str, Any] = {}

    for provider, provider_configurations in configurations.items():
        if not _is_record(provider_configurations):
            normalized[provider] = provider_configurations
            continue

        shared = {
            key.lower(): value
            for key, value in provider_configurations.items()
            if _is_shared_key(key) and not _is_record(value)
        }

        normalized[provider] = {}
        for trigger_name, trigger_configuration in provider_configurations.items():
            if _is_record(trigger_configuration):
                normalized[provider][trigger_name] = {**shared, **trigger_configuration}
            elif not _is_shared_key(trigger_name):
                normalized[provider][trigger_name] = trigger_configuration

    return normalized


def _shared_configuration_by_name(configurations: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    values_by_name: Dict[str, Dict[str, Dict[Any, Any]]] = {}

    for provider_configurations in configurations.values():
        if not _is_record(provider_configurations):
            continue
        for trigger_name, trigger_configuration in provider_configurations.items():
            if not _is_record(trigger_configuration):
                continue
            for key in SHARED_TRIGGER_CONFIGURATION_KEYS:
                if key in trigger_configuration and trigger_configuration[key] is not None:
                    value = trigger_configuration[key]
                    distinct_values = values_by_name.setdefault(trigger_name.lower(), {}).setdefault(key, {})
                    distinct_values.setdefault(_hashable(value), value)

    shared: Dict[str, Dict[str, Any]] = {}
    for trigger_name, values_by_key in values_by_name.items():
        for key in SHARED_TRIGGER_CONFIGURATION_KEYS:
            distinct_values = values_by_key.get(key)
            # More than one distinct value is ambiguous: no inference
            if distinct_values is not None and len(distinct_values) == 1:
                shared.setdefault(trigger_name, {})[key] = next(iter(distinct_values.values()))
    return shared


def apply_shared_trigger_configuration_by_name(
    configurations: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    """Apply provider-level shared keys, then values inferred across providers.

    Args:
        configurations: Raw trigger tree (``provider -> name -> settings``)

    Returns:
        New trigger tree with shared defaults merged into every instance
    """
    with_provider_shared = _apply_provider_shared_configuration(configurations or {})
    shared_by_name = _shared_configuration_by_name(with_provider_shared)

    resolved: Dict[str, Any] = {}
    for provider, provider_configurations in with_provider_shared.items():
        if not _is_record(provider_configurations):
            resolved[provider] = provider_configurations
            continue
        resolved[provider] = {}
        for trigger_name, trigger_configuration in provider_configurations.items():
            if not _is_record(trigger_configuration):
                resolved[provider][trigger_name] = trigger_configuration
                continue
            shared = shared_by_name.get(trigger_name.lower(), {})
            resolved[provider][trigger_name] = {**shared, **trigger_configuration}
    return resolved


def is_valid_trigger_group(entry: Mapping[str, Any]) -> bool:
    """Return True when entry is non-empty and only holds scalar shared keys."""
    return len(entry) > 0 and all(
        _is_shared_key(key) and not _is_record(value) for key, value in entry.items()
    )


def classify_configuration_entry(key: str, value: Any, known_providers: Iterable[str]) -> str:
    """Classify a top-level configuration entry as ``provider`` or ``trigger-group``."""
    if key.lower() in {provider.lower() for provider in known_providers}:
        return "provider"
    if _is_record(value) and is_valid_trigger_group(value):
        return "trigger-group"
    return "provider"


def apply_trigger_group_defaults(
    configurations: Optional[Mapping[str, Any]],
    known_providers: Iterable[str],
    on_group_detected: Optional[GroupDetectedCallback] = None,
) -> Optional[Mapping[str, Any]]:
    """Merge trigger group defaults into same-named trigger instances.

    Args:
        configurations: Raw trigger tree
        known_providers: Registered provider names
        on_group_detected: Called with ``(group_name, settings)`` for each group found

    Returns:
        The input itself when it is empty or has no groups, otherwise a new
        tree without the group entries
    """
    if not configurations:
        return configurations

    known_provider_set = {provider.lower() for provider in known_providers}
    group_defaults: Dict[str, Mapping[str, Any]] = {}
    provider_configurations: Dict[str, Any] = {}

    for key, value in configurations.items():
        if classify_configuration_entry(key, value, known_provider_set) == "trigger-group":
            group_name = key.lower()
            group_defaults[group_name] = value
            if on_group_detected is not None:
                on_group_detected(group_name, value)
            continue
        provider_configurations[key] = value

    if not group_defaults:
        return configurations

    resolved: Dict[str, Any] = {}
    for provider, provider_configuration in provider_configurations.items():
        if not _is_record(provider_configuration):
            resolved[provider] = provider_configuration
            continue
        resolved[provider] = {}
        for trigger_name, trigger_configuration in provider_configuration.items():
            defaults = group_defaults.get(trigger_name.lower())
            if defaults is None or not _is_record(trigger_configuration):
                resolved[provider][trigger_name] = trigger_configuration
            else:
                resolved[provider][trigger_name] = {**defaults, **trigger_configuration}
    return resolved


def _log_group_detected(group_name: str, settings: Mapping[str, Any]) -> None:
    logger.info(f"Detected trigger group '{group_name}' with shared configuration: {dict(settings)}")


def resolve_trigger_configurations(
    raw: Optional[Mapping[str, Any]],
    known_providers: Iterable[str],
) -> Dict[str, Any]:
    """Resolve the raw trigger tree into per-instance settings.

    Trigger group defaults are applied first, then provider-level shared keys
    and values inferred across providers.
    """
    with_groups = apply_trigger_group_defaults(raw, known_providers, _log_group_detected)
    return apply_shared_trigger_configuration_by_name(with_groups)
