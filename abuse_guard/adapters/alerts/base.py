"""Alert sink interface and alert payload."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class AlertEvent:
    """Security alert published by the rate limiter.

    Attributes:
        event_type: Stable event name (e.g. ``global_tightening_activated``).
        severity: ``info``, ``warning`` or ``critical``.
        message: Human-readable summary.
        context: Structured, PII-free fields (hashes and counts only).
        created_at: UTC creation time.
    """

    event_type: str
    severity: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["created_at"] = self.created_at.isoformat()
        return payload


class AbstractAlertSink(ABC):
    """Destination for alert events."""

    @abstractmethod
    async def send(self, event: AlertEvent) -> None:
        """Deliver one event.

        Raises:
            Exception: Implementations may raise; the alert channel logs and
                drops failed deliveries.
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release resources. No-op by default."""
