"""Tests for the event bus (updatewatch/services/event_bus.py).

Tests both dispatch families:
- Fire-and-forget events (synchronous, registration order)
- Ordered events (awaited sequentially, sorted by order then id)
- Unregistration and reset
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from updatewatch.services.event_bus import (
    CONTAINER_ADDED,
    CONTAINER_REPORT,
    EventBus,
)


class TestFireAndForget:
    """Test suite for fire-and-forget events."""

    def test_listeners_run_in_registration_order(self, bus):
        """Test listeners are called synchronously in registration order."""
        calls = []
        bus.register_container_added(lambda payload: calls.append(("first", payload)))
        bus.register_container_added(lambda payload: calls.append(("second", payload)))

        bus.emit_container_added({"id": "c1"})

        assert calls == [("first", {"id": "c1"}), ("second", {"id": "c1"})]

    def test_listener_failure_propagates(self, bus):
        """Test the first failing listener aborts the emission."""
        second = MagicMock()
        bus.on(CONTAINER_ADDED, MagicMock(side_effect=RuntimeError("boom")))
        bus.on(CONTAINER_ADDED, second)

        with pytest.raises(RuntimeError, match="boom"):
            bus.emit(CONTAINER_ADDED, {})
        second.assert_not_called()

    @pytest.mark.asyncio
    async def test_async_listener_is_scheduled(self, bus):
        """Test async listeners are scheduled on the running loop."""
        done = asyncio.Event()

        async def listener(payload):
            done.set()

        bus.register_self_update_starting(listener)
        bus.emit_self_update_starting()

        await asyncio.wait_for(done.wait(), timeout=1)

    def test_unknown_event_raises(self, bus):
        """Test unknown event names are rejected."""
        with pytest.raises(ValueError):
            bus.on("not-an-event", MagicMock())
        with pytest.raises(ValueError):
            bus.emit(CONTAINER_REPORT, {})


class TestOrderedEvents:
    """Test suite for ordered (awaited) events."""

    @pytest.mark.asyncio
    async def test_handlers_run_by_order_then_id(self, bus):
        """Test handlers are sorted by order, then id, then registration."""
        calls = []

        def handler(name):
            async def _handle(payload):
                calls.append(name)
            return _handle

        bus.register_container_report(handler("default"))
        bus.register_container_report(handler("b"), order=10, id="b")
        bus.register_container_report(handler("a"), order=10, id="a")
        bus.register_container_report(handler("first"), order=1)

        await bus.emit_container_report({})

        assert calls == ["first", "a", "b", "default"]

    @pytest.mark.asyncio
    async def test_invalid_order_defaults_to_100(self, bus):
        """Test non-numeric and non-finite orders sort as 100."""
        calls = []
        bus.register_container_reports(lambda payload: calls.append("nan"), order=float("nan"), id="b")
        bus.register_container_reports(lambda payload: calls.append("text"), order="soon", id="a")
        bus.register_container_reports(lambda payload: calls.append("early"), order=99)
        bus.register_container_reports(lambda payload: calls.append("late"), order=101)

        await bus.emit_container_reports([])

        assert calls == ["early", "text", "nan", "late"]

    @pytest.mark.asyncio
    async def test_handlers_are_awaited_sequentially(self, bus):
        """Test a handler completes before the next one starts."""
        events = []

        async def slow(payload):
            events.append("slow-start")
            await asyncio.sleep(0.01)
            events.append("slow-end")

        async def fast(payload):
            events.append("fast")

        bus.register_container_update_applied(slow, order=1)
        bus.register_container_update_applied(fast, order=2)

        await bus.emit_container_update_applied("local_nginx")

        assert events == ["slow-start", "slow-end", "fast"]

    @pytest.mark.asyncio
    async def test_failure_aborts_remaining_handlers(self, bus):
        """Test the first failure propagates and skips later handlers."""
        later = MagicMock()

        async def failing(payload):
            raise RuntimeError("audit store down")

        bus.register_container_update_failed(failing, order=1)
        bus.register_container_update_failed(later, order=2)

        with pytest.raises(RuntimeError, match="audit store down"):
            await bus.emit_container_update_failed({})
        later.assert_not_called()


class TestUnregisterAndReset:
    """Test suite for unregister functions and reset()."""

    @pytest.mark.asyncio
    async def test_unregister_removes_only_its_registration(self, bus):
        """Test unregister removes exactly the registration it was created for."""
        handler = MagicMock()
        unregister_first = bus.register_container_report(handler, order=1)
        bus.register_container_report(handler, order=2)

        unregister_first()
        unregister_first()
        await bus.emit_container_report("payload")

        handler.assert_called_once_with("payload")

    @pytest.mark.asyncio
    async def test_unregister_bound_method(self, bus):
        """Test bound methods can be unregistered."""

        class Listener:
            def __init__(self):
                self.calls = 0

            def handle(self, payload):
                self.calls += 1

        listener = Listener()
        unregister = bus.register_container_report(listener.handle)
        unregister()
        await bus.emit_container_report({})

        assert listener.calls == 0

    @pytest.mark.asyncio
    async def test_reset_clears_registrations(self, bus):
        """Test reset clears both families."""
        ordered = MagicMock()
        listener = MagicMock()
        bus.register_container_report(ordered)
        bus.register_container_added(listener)

        bus.reset()
        await bus.emit_container_report({})
        bus.emit_container_added({})

        ordered.assert_not_called()
        listener.assert_not_called()

    def test_buses_are_independent(self):
        """Test registrations are scoped to their bus instance."""
        first, second = EventBus(), EventBus()
        listener = MagicMock()
        first.register_watcher_start(listener)

        second.emit_watcher_start("docker.local")

        listener.assert_not_called()
