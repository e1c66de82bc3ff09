"""Outbound notifications, dispatched only after a mutation commits."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from donation_ledger.core.errors import NotificationError
from donation_ledger.models import EntityType

logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class Notification:
    """A message to deliver about one entity."""

    channel: str
    payload: dict[str, Any]
    entity_type: EntityType = EntityType.SYSTEM
    entity_id: int | None = None
    # Called with the outcome once delivery was attempted
    on_outcome: Callable[["NotificationOutcome"], Awaitable[None]] | None = None


@dataclass
class NotificationOutcome:
    channel: str
    status: OutcomeStatus
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher:
    """Fire-and-forget delivery through an HTTP webhook.

    ``notify`` never raises; delivery problems are logged and returned as a
    FAILED outcome.
    """

    def __init__(
        self,
        webhook_url: str | None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.transport = transport

    async def notify(self, channel: str, payload: dict[str, Any]) -> NotificationOutcome:
        """Deliver a payload on a channel."""
        if not self.webhook_url:
            logger.info(f"Notification on '{channel}' skipped: no webhook configured")
            return NotificationOutcome(channel=channel, status=OutcomeStatus.SKIPPED)

        try:
            status_code = await self._post(channel, payload)
        except NotificationError as e:
            logger.warning(f"Notification on '{channel}' failed: {e.message}")
            return NotificationOutcome(channel=channel, status=OutcomeStatus.FAILED, error=e.message)

        logger.info(f"Notification on '{channel}' delivered")
        return NotificationOutcome(
            channel=channel,
            status=OutcomeStatus.SENT,
            details={"status_code": status_code},
        )

    async def _post(self, channel: str, payload: dict[str, Any]) -> int:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.webhook_url,
                    json={"channel": channel, "payload": payload},
                )
                response.raise_for_status()
                return response.status_code
        except httpx.HTTPError as e:
            raise NotificationError(f"{type(e).__name__}: {e}") from e
