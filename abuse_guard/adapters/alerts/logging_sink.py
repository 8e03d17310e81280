"""Alert sink that only writes alerts to the application log."""

from __future__ import annotations

import logging

from abuse_guard.adapters.alerts.base import AbstractAlertSink, AlertEvent

logger = logging.getLogger(__name__)

_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "critical": logging.CRITICAL,
}


class LoggingAlertSink(AbstractAlertSink):
    """Default sink when no webhook is configured."""

    async def send(self, event: AlertEvent) -> None:
        logger.log(
            _LEVELS.get(event.severity, logging.WARNING),
            "alerts.event",
            extra={
                "event_type": event.event_type,
                "severity": event.severity,
                "alert_message": event.message,
                "alert_context": event.context,
            },
        )
