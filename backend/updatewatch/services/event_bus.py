"""Event bus for UpdateWatch lifecycle events.

Two dispatch families share one registration shape:

- fire-and-forget events are delivered synchronously, in registration order;
- ordered events are awaited one handler at a time, sorted by
  ``(order, id, sequence)``.

Neither family isolates handler failures: the first exception propagates to
the emitter and the remaining handlers are skipped.
"""

import asyncio
import inspect
import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Set

logger = logging.getLogger(__name__)

DEFAULT_HANDLER_ORDER = 100

# Fire-and-forget events
CONTAINER_ADDED = "container-added"
CONTAINER_UPDATED = "container-updated"
CONTAINER_REMOVED = "container-removed"
WATCHER_START = "watcher-start"
WATCHER_STOP = "watcher-stop"
SELF_UPDATE_STARTING = "self-update-starting"

# Ordered (awaited) events
CONTAINER_REPORT = "container-report"
CONTAINER_REPORTS = "container-reports"
CONTAINER_UPDATE_APPLIED = "container-update-applied"
CONTAINER_UPDATE_FAILED = "container-update-failed"

FIRE_AND_FORGET_EVENTS = (
    CONTAINER_ADDED,
    CONTAINER_UPDATED,
    CONTAINER_REMOVED,
    WATCHER_START,
    WATCHER_STOP,
    SELF_UPDATE_STARTING,
)
ORDERED_EVENTS = (
    CONTAINER_REPORT,
    CONTAINER_REPORTS,
    CONTAINER_UPDATE_APPLIED,
    CONTAINER_UPDATE_FAILED,
)

Handler = Callable[[Any], Any]
Unregister = Callable[[], None]


@dataclass
class HandlerRegistration:
    """A registered handler with its ordering keys."""

    handler: Handler
    order: float
    id: str
    sequence: int

    def sort_key(self) -> tuple:
        return (self.order, self.id, self.sequence)


def _normalize_order(order: Any) -> float:
    try:
        order_number = float(order)
    except (TypeError, ValueError):
        return DEFAULT_HANDLER_ORDER
    if not math.isfinite(order_number):
        return DEFAULT_HANDLER_ORDER
    return order_number


class EventBus:
    """Registry and dispatcher for lifecycle events."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[HandlerRegistration]] = {}
        self._ordered_handlers: Dict[str, List[HandlerRegistration]] = {}
        self._sequence = 0
        self._pending_tasks: Set[asyncio.Task] = set()
        self.reset()

    def reset(self) -> None:
        """Clear every registration and restart the sequence counter."""
        self._listeners = {event: [] for event in FIRE_AND_FORGET_EVENTS}
        self._ordered_handlers = {event: [] for event in ORDERED_EVENTS}
        self._sequence = 0

    def _next_sequence(self) -> int:
        sequence = self._sequence
        self._sequence += 1
        return sequence

    @staticmethod
    def _unregister_from(
        registrations: List[HandlerRegistration], registration: HandlerRegistration
    ) -> Unregister:
        def unregister() -> None:
            for index, candidate in enumerate(registrations):
                # Identity: the same handler may be registered more than once
                if candidate is registration:
                    del registrations[index]
                    return

        return unregister

    def _get_listeners(self, event: str) -> List[HandlerRegistration]:
        if event not in self._listeners:
            raise ValueError(f"Unknown fire-and-forget event: {event}")
        return self._listeners[event]

    def _get_ordered_handlers(self, event: str) -> List[HandlerRegistration]:
        if event not in self._ordered_handlers:
            raise ValueError(f"Unknown ordered event: {event}")
        return self._ordered_handlers[event]

    # Fire-and-forget family

    def on(self, event: str, handler: Handler) -> Unregister:
        """Register a fire-and-forget listener and return its unregister function."""
        listeners = self._get_listeners(event)
        registration = HandlerRegistration(
            handler=handler,
            order=DEFAULT_HANDLER_ORDER,
            id="",
            sequence=self._next_sequence(),
        )
        listeners.append(registration)
        return self._unregister_from(listeners, registration)

    def emit(self, event: str, payload: Any = None) -> None:
        """Deliver an event synchronously to every listener in registration order.

        Listeners returning an awaitable get it scheduled on the running loop.
        """
        for registration in list(self._get_listeners(event)):
            result = registration.handler(payload)
            if inspect.isawaitable(result):
                self._schedule(result)

    def _schedule(self, awaitable: Awaitable) -> None:
        try:
            task = asyncio.ensure_future(awaitable)
        except RuntimeError:
            # No running loop to schedule on
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning("Async listener dropped: no running event loop")
            return
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    # Ordered family

    def register_ordered(
        self,
        event: str,
        handler: Handler,
        order: Any = None,
        id: str | None = None,
    ) -> Unregister:
        """Register an ordered handler and return its unregister function.

        Args:
            event: Ordered event name
            handler: Sync or async callable receiving the payload
            order: Execution priority (lower runs first, default 100)
            id: Tie-break identifier (compared after order)
        """
        handlers = self._get_ordered_handlers(event)
        registration = HandlerRegistration(
            handler=handler,
            order=_normalize_order(order),
            id=id or "",
            sequence=self._next_sequence(),
        )
        handlers.append(registration)
        return self._unregister_from(handlers, registration)

    async def emit_ordered(self, event: str, payload: Any = None) -> None:
        """Await every handler of an ordered event strictly one after another."""
        handlers = sorted(
            self._get_ordered_handlers(event), key=HandlerRegistration.sort_key
        )
        for registration in handlers:
            result = registration.handler(payload)
            if inspect.isawaitable(result):
                await result

    # Named helpers

    def register_container_added(self, handler: Handler) -> Unregister:
        return self.on(CONTAINER_ADDED, handler)

    def emit_container_added(self, container: Any) -> None:
        self.emit(CONTAINER_ADDED, container)

    def register_container_updated(self, handler: Handler) -> Unregister:
        return self.on(CONTAINER_UPDATED, handler)

    def emit_container_updated(self, container: Any) -> None:
        self.emit(CONTAINER_UPDATED, container)

    def register_container_removed(self, handler: Handler) -> Unregister:
        return self.on(CONTAINER_REMOVED, handler)

    def emit_container_removed(self, container: Any) -> None:
        self.emit(CONTAINER_REMOVED, container)

    def register_watcher_start(self, handler: Handler) -> Unregister:
        return self.on(WATCHER_START, handler)

    def emit_watcher_start(self, watcher: Any) -> None:
        self.emit(WATCHER_START, watcher)

    def register_watcher_stop(self, handler: Handler) -> Unregister:
        return self.on(WATCHER_STOP, handler)

    def emit_watcher_stop(self, watcher: Any) -> None:
        self.emit(WATCHER_STOP, watcher)

    def register_self_update_starting(self, handler: Handler) -> Unregister:
        return self.on(SELF_UPDATE_STARTING, handler)

    def emit_self_update_starting(self, payload: Any = None) -> None:
        self.emit(SELF_UPDATE_STARTING, payload)

    def register_container_report(
        self, handler: Handler, order: Any = None, id: str | None = None
    ) -> Unregister:
        return self.register_ordered(CONTAINER_REPORT, handler, order=order, id=id)

    async def emit_container_report(self, container_report: Any) -> None:
        await self.emit_ordered(CONTAINER_REPORT, container_report)

    def register_container_reports(
        self, handler: Handler, order: Any = None, id: str | None = None
    ) -> Unregister:
        return self.register_ordered(CONTAINER_REPORTS, handler, order=order, id=id)

    async def emit_container_reports(self, container_reports: Any) -> None:
        await self.emit_ordered(CONTAINER_REPORTS, container_reports)

    def register_container_update_applied(
        self, handler: Handler, order: Any = None, id: str | None = None
    ) -> Unregister:
        return self.register_ordered(
            CONTAINER_UPDATE_APPLIED, handler, order=order, id=id
        )

    async def emit_container_update_applied(self, container_id: Any) -> None:
        await self.emit_ordered(CONTAINER_UPDATE_APPLIED, container_id)

    def register_container_update_failed(
        self, handler: Handler, order: Any = None, id: str | None = None
    ) -> Unregister:
        return self.register_ordered(
            CONTAINER_UPDATE_FAILED, handler, order=order, id=id
        )

    async def emit_container_update_failed(self, payload: Any) -> None:
        await self.emit_ordered(CONTAINER_UPDATE_FAILED, payload)


__all__ = [
    "EventBus",
    "HandlerRegistration",
    "DEFAULT_HANDLER_ORDER",
    "FIRE_AND_FORGET_EVENTS",
    "ORDERED_EVENTS",
]
