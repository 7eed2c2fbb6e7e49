"""Publishes the result of a watch cycle on the event bus."""

import logging
from typing import Dict, List, Optional, Sequence

from updatewatch.schemas.container import Container, ContainerReport
from updatewatch.services.event_bus import EventBus
from updatewatch.services.metrics import get_container_reports_counter
from updatewatch.utils.error_handling import log_and_continue

logger = logging.getLogger(__name__)


def _count(status: str) -> None:
    counter = get_container_reports_counter()
    if counter is not None:
        counter.labels(status=status).inc()


def build_reports(
    containers: Sequence[Container],
    previous_by_id: Optional[Dict[str, Container]] = None,
) -> List[ContainerReport]:
    """Pair every container with whether its result changed since the last cycle."""
    previous_by_id = previous_by_id or {}
    return [
        ContainerReport(
            container=container,
            changed=container.result_changed(previous_by_id.get(container.id)),
        )
        for container in containers
    ]


async def publish_watch_cycle(
    bus: EventBus,
    containers: Sequence[Container],
    previous_by_id: Optional[Dict[str, Container]] = None,
) -> List[ContainerReport]:
    """Emit ``container-report`` for each container, then one ``container-reports``.

    A failing handler aborts the rest of its emission; the failure is logged
    and counted, and publishing continues with the next report.

    Args:
        bus: Event bus to publish on
        containers: Containers found by the watch cycle
        previous_by_id: Containers of the previous cycle, keyed by id

    Returns:
        The published reports
    """
    reports = build_reports(containers, previous_by_id)

    for report in reports:
        try:
            await bus.emit_container_report(report)
            _count("success")
        except Exception as e:
            _count("error")
            log_and_continue(
                logger, e, f"Error while publishing report of {report.container.full_name}", "error"
            )

    try:
        await bus.emit_container_reports(reports)
    except Exception as e:
        log_and_continue(logger, e, "Error while publishing watch cycle reports", "error")

    changed = sum(1 for report in reports if report.changed)
    logger.info(f"Published {len(reports)} container report(s) ({changed} changed)")
    return reports
