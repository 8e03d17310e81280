"""Asynchronous alert channel.

The request path publishes alerts into a bounded in-memory queue and returns
immediately; a background worker started with the application hands them to
the configured sink. Publishing never blocks and never raises: a full queue
drops the event and logs it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from abuse_guard.adapters.alerts.base import AbstractAlertSink, AlertEvent

logger = logging.getLogger(__name__)


class AlertChannel:
    """Bounded queue plus a single delivery worker."""

    def __init__(self, sink: AbstractAlertSink, *, max_size: int = 1000) -> None:
        self._sink = sink
        self._queue: asyncio.Queue[AlertEvent] = asyncio.Queue(maxsize=max_size)
        self._worker: asyncio.Task | None = None
        self._stats = {
            "published": 0,
            "delivered": 0,
            "dropped": 0,
            "failed": 0,
        }

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def publish(self, event: AlertEvent) -> bool:
        """Enqueue an alert without waiting.

        Returns:
            False if the queue was full and the event was dropped.
        """

        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._stats["dropped"] += 1
            logger.warning(
                "alerts.dropped",
                extra={"event_type": event.event_type, "reason": "queue_full"},
            )
            return False

        self._stats["published"] += 1
        return True

    async def start(self) -> None:
        """Start the delivery worker (idempotent)."""

        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="alert-channel-worker")
        logger.info("alerts.channel_started")

    async def stop(self) -> None:
        """Stop the worker, deliver what is still queued and close the sink."""

        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None

        await self.drain()
        await self._sink.close()
        logger.info("alerts.channel_stopped", extra=dict(self._stats))

    async def drain(self) -> int:
        """Deliver every queued event now. Returns how many were processed."""

        processed = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return processed
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()
            processed += 1

    def stats(self) -> dict[str, int]:
        return {**self._stats, "pending": self._queue.qsize()}

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def _deliver(self, event: AlertEvent) -> None:
        try:
            await self._sink.send(event)
        except Exception as exc:  # noqa: BLE001 - delivery is best-effort
            self._stats["failed"] += 1
            logger.error(
                "alerts.delivery_failed",
                extra={
                    "event_type": event.event_type,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            return
        self._stats["delivered"] += 1
