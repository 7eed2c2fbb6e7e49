"""Tests for engine wiring (updatewatch/main.py)."""

from unittest.mock import AsyncMock

import httpx
import pytest

from updatewatch.exceptions import TriggerConfigurationError, UnknownTriggerError
from updatewatch.main import UpdateWatchEngine

ENV = {
    "UW_TRIGGER_NTFY_HOME_TOPIC": "updates",
    "UW_TRIGGER_NTFY_HOME_URL": "http://ntfy.lan",
    "UW_TRIGGER_NTFY_THRESHOLD": "minor",
    "UW_METRICS_ENABLED": "false",
}


@pytest.fixture
def engine(bus, backup_store, audit_store, scheduler, docker_client):
    return UpdateWatchEngine(
        env=ENV,
        bus=bus,
        backup_store=backup_store,
        audit_store=audit_store,
        docker_client=docker_client,
        scheduler=scheduler,
    )


def mock_ntfy(engine):
    provider = engine.dispatcher.triggers["ntfy.home"].provider
    request = AsyncMock(
        return_value=httpx.Response(200, json={"id": "m1"}, request=httpx.Request("POST", "http://ntfy.lan"))
    )
    provider.client.request = request
    return request


class TestUpdateWatchEngine:
    """Test suite for UpdateWatchEngine."""

    @pytest.mark.asyncio
    async def test_start_registers_configured_triggers(self, engine):
        """Test triggers from the environment are built and registered."""
        await engine.start()

        assert engine.running is True
        instance = engine.dispatcher.triggers["ntfy.home"]
        assert instance.configuration.threshold == "minor"
        assert instance.configuration.url == "http://ntfy.lan"

        await engine.stop()

    @pytest.mark.asyncio
    async def test_publish_notifies_once(self, engine, make_container):
        """Test a watch cycle notifies, and an unchanged cycle does not notify again."""
        await engine.start()
        request = mock_ntfy(engine)
        containers = [make_container(), make_container(container_id="c2", name="redis", remote_tag="1.2.4")]

        first = await engine.publish(containers)
        second = await engine.publish(containers)

        assert [report.changed for report in first] == [True, True]
        assert [report.changed for report in second] == [False, False]
        # redis is a patch update, below the minor threshold
        request.assert_awaited_once()
        assert request.call_args.kwargs["json"]["title"] == "New tag found for container nginx"

        await engine.stop()

    @pytest.mark.asyncio
    async def test_stop_clears_registrations(self, engine, scheduler, make_container):
        """Test stop deregisters triggers and shuts the scheduler down."""
        await engine.start()
        request = mock_ntfy(engine)

        await engine.stop()
        await engine.publish([make_container()])

        assert engine.running is False
        request.assert_not_called()
        scheduler.shutdown.assert_called_once_with(wait=False)

    @pytest.mark.asyncio
    async def test_invalid_trigger_configuration_fails_start(self, bus, scheduler):
        """Test invalid configuration is reported at startup."""
        engine = UpdateWatchEngine(
            env={"UW_TRIGGER_NTFY_HOME_TOPIC": "t", "UW_TRIGGER_NTFY_HOME_PRIORITY": "9"},
            bus=bus,
            scheduler=scheduler,
        )

        with pytest.raises(TriggerConfigurationError):
            await engine.start()
        assert engine.running is False

    @pytest.mark.asyncio
    async def test_unknown_provider_fails_start(self, bus, scheduler):
        """Test an unknown provider type is reported at startup."""
        engine = UpdateWatchEngine(env={"UW_TRIGGER_PIGEON_HOME_URL": "x"}, bus=bus, scheduler=scheduler)

        with pytest.raises(UnknownTriggerError):
            await engine.start()
