"""Webhook alert sink using httpx."""

from __future__ import annotations

import httpx

from abuse_guard.adapters.alerts.base import AbstractAlertSink, AlertEvent


class WebhookAlertSink(AbstractAlertSink):
    """POSTs each alert as JSON to a configured URL.

    Uses a shared ``httpx.AsyncClient`` for connection reuse.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the webhook sink.

        Args:
            url: Webhook endpoint receiving alerts.
            timeout_seconds: Request timeout in seconds.
            client: Optional pre-built client (tests inject a mock transport).
        """
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def send(self, event: AlertEvent) -> None:
        """Deliver the alert.

        Raises:
            httpx.HTTPError: On transport errors or non-2xx responses.
        """
        response = await self._client.post(self._url, json=event.to_payload())
        response.raise_for_status()

    async def close(self) -> None:
        await self._client.aclose()
