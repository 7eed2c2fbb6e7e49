"""Prometheus metrics for UpdateWatch."""

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# Application info
app_info = Info("updatewatch_app", "UpdateWatch application information")
app_info.info({"version": "1.0.0", "name": "UpdateWatch"})

# Trigger metrics
trigger_count = Counter(
    "updatewatch_trigger_count",
    "Trigger executions",
    ["type", "name", "status"],
)
trigger_duration = Histogram(
    "updatewatch_trigger_duration_seconds",
    "Trigger execution duration",
    ["type"],
)

# Audit metrics
audit_entries_total = Counter(
    "updatewatch_audit_entries_total",
    "Audit entries recorded",
    ["action"],
)

# Watch cycle metrics
container_reports_total = Counter(
    "updatewatch_container_reports_total",
    "Container reports published",
    ["status"],
)

# Health monitor metrics
health_monitor_sessions_total = Counter(
    "updatewatch_health_monitor_sessions_total",
    "Health monitor sessions by final state",
    ["state"],
)

# Metrics are optional for correctness; getters return None when disabled
_metrics_enabled = True


def set_metrics_enabled(enabled: bool) -> None:
    """Enable or disable metric collection."""
    global _metrics_enabled
    _metrics_enabled = enabled


def get_trigger_counter() -> Counter | None:
    return trigger_count if _metrics_enabled else None


def get_trigger_duration() -> Histogram | None:
    return trigger_duration if _metrics_enabled else None


def get_audit_counter() -> Counter | None:
    return audit_entries_total if _metrics_enabled else None


def get_container_reports_counter() -> Counter | None:
    return container_reports_total if _metrics_enabled else None


def get_health_monitor_counter() -> Counter | None:
    return health_monitor_sessions_total if _metrics_enabled else None


def get_metrics() -> bytes:
    """Get Prometheus metrics in text format.

    Returns:
        Metrics data as bytes
    """
    return generate_latest()


def get_content_type() -> str:
    """Get Prometheus content type."""
    return CONTENT_TYPE_LATEST
