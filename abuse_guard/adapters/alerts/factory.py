"""Factory for creating the configured alert sink."""

from abuse_guard.adapters.alerts.base import AbstractAlertSink
from abuse_guard.adapters.alerts.logging_sink import LoggingAlertSink
from abuse_guard.adapters.alerts.webhook import WebhookAlertSink
from abuse_guard.core.config import AlertSettings, settings


def create_alert_sink(alert_settings: AlertSettings | None = None) -> AbstractAlertSink:
    """Return a webhook sink when a URL is configured, else a logging sink."""
    cfg = alert_settings or settings.alert

    if cfg.webhook_url:
        return WebhookAlertSink(cfg.webhook_url, timeout_seconds=cfg.timeout_seconds)

    return LoggingAlertSink()
