"""Environment-driven configuration.

Every setting is read from ``UW_`` prefixed environment variables. Nested
settings use ``_`` as path separator and lower-cased segments:

    UW_TRIGGER_NTFY_HOME_TOPIC=updates   -> {"ntfy": {"home": {"topic": "updates"}}}

Any variable may be suffixed with ``__FILE`` to read its value from a file
(Docker secrets): ``UW_TRIGGER_SLACK_OPS_TOKEN__FILE=/run/secrets/slack``.
Values stay strings; pydantic coerces them when trigger configurations are
validated.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

ENV_PREFIX = "UW_"
VAR_FILE_SUFFIX = "__FILE"


def collect_environment(env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Return the ``UW_`` variables with file-backed secrets resolved.

    Args:
        env: Environment to read (defaults to ``os.environ``)

    Raises:
        OSError: If a ``__FILE`` variable points to an unreadable file
    """
    source = os.environ if env is None else env
    variables = {
        key.upper(): value for key, value in source.items() if key.upper().startswith(ENV_PREFIX)
    }

    for key in [key for key in variables if key.endswith(VAR_FILE_SUFFIX)]:
        secret_path = Path(variables.pop(key))
        # Secret files usually end with a newline that is not part of the value
        variables[key[: -len(VAR_FILE_SUFFIX)]] = secret_path.read_text(encoding="utf-8").rstrip("\r\n")
        logger.debug(f"Loaded {key[: -len(VAR_FILE_SUFFIX)]} from secret file")
    return variables


def _set_path(target: Dict[str, Any], path: list[str], value: str) -> None:
    node = target
    for segment in path[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            if child is not None:
                logger.warning(f"Configuration value at '{segment}' is overridden by nested settings")
            child = {}
            node[segment] = child
        node = child
    leaf = path[-1]
    if isinstance(node.get(leaf), dict):
        logger.warning(f"Ignoring scalar value for '{leaf}' which also holds nested settings")
        return
    node[leaf] = value


def get(prop: str, env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Build the nested settings tree below a dotted property.

    Args:
        prop: Property path, e.g. ``uw.trigger``
        env: Environment to read (defaults to ``os.environ``)

    Returns:
        Nested dict of string values
    """
    prefix = prop.replace(".", "_").upper() + "_"
    tree: Dict[str, Any] = {}
    # Sorted so that conflicting paths resolve deterministically
    for key, value in sorted(collect_environment(env).items()):
        if not key.startswith(prefix):
            continue
        path = [segment for segment in key[len(prefix):].lower().split("_") if segment]
        if path:
            _set_path(tree, path, value)
    return tree


def get_trigger_configurations(env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Return the raw trigger tree (``provider -> name -> settings``)."""
    return get("uw.trigger", env)


def get_log_level(env: Optional[Mapping[str, str]] = None) -> str:
    return collect_environment(env).get("UW_LOG_LEVEL", "INFO").upper()


def get_metrics_enabled(env: Optional[Mapping[str, str]] = None) -> bool:
    return collect_environment(env).get("UW_METRICS_ENABLED", "true").strip().lower() == "true"


def get_version(env: Optional[Mapping[str, str]] = None) -> str:
    return collect_environment(env).get("UW_VERSION", "unknown")
