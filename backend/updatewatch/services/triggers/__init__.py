"""Trigger providers package for UpdateWatch.

Providers turn container updates into notifications (ntfy, Gotify, Pushover,
Slack, Discord, Telegram, email) or act on them (Docker). The dispatcher
builds one instance per configured trigger and subscribes it to the event bus.
"""

from updatewatch.services.triggers.base import TriggerContext, TriggerProvider
from updatewatch.services.triggers.dispatcher import (
    PROVIDERS,
    TriggerDispatcher,
    TriggerInstance,
)
from updatewatch.services.triggers.health_monitor import (
    HealthMonitorOptions,
    HealthMonitorSession,
    HealthMonitorState,
    start_health_monitor,
)

__all__ = [
    "PROVIDERS",
    "TriggerContext",
    "TriggerDispatcher",
    "TriggerInstance",
    "TriggerProvider",
    "HealthMonitorOptions",
    "HealthMonitorSession",
    "HealthMonitorState",
    "start_health_monitor",
]
