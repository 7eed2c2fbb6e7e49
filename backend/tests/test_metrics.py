"""Tests for Prometheus metrics (updatewatch/services/metrics.py)."""

from prometheus_client import REGISTRY

from updatewatch.services.metrics import (
    get_audit_counter,
    get_content_type,
    get_metrics,
    get_trigger_counter,
    set_metrics_enabled,
)

TRIGGER_LABELS = {"type": "ntfy", "name": "metrics", "status": "success"}


class TestMetrics:
    """Test suite for metric getters and exposition."""

    def test_getters_return_none_when_disabled(self):
        """Test metrics can be switched off without breaking callers."""
        set_metrics_enabled(False)

        assert get_trigger_counter() is None
        assert get_audit_counter() is None

    def test_counts_trigger_runs(self):
        """Test counted trigger runs are recorded with their labels."""
        before = REGISTRY.get_sample_value("updatewatch_trigger_count_total", TRIGGER_LABELS) or 0.0

        get_trigger_counter().labels(**TRIGGER_LABELS).inc()

        assert REGISTRY.get_sample_value("updatewatch_trigger_count_total", TRIGGER_LABELS) == before + 1

    def test_exposition(self):
        """Test the text exposition carries the project metrics."""
        output = get_metrics().decode()

        assert "# TYPE updatewatch_trigger_count counter" in output
        assert "updatewatch_app_info" in output
        assert get_content_type().startswith("text/plain")
