"""Outbound notifications for recommendations, trades and redemptions."""
import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)

RECOMMENDATION = "recommendation"
TRADE = "trade"
REDEMPTION = "redemption"


class Notifier(ABC):
    """
    Delivery channel for subscriber-facing events.

    The core only hands over structured payloads; formatting and transport
    belong to the implementation.
    """

    @abstractmethod
    async def notify(self, subscriber_id: str, kind: str, payload: dict[str, Any]) -> None:
        """
        Deliver one event.

        Args:
            subscriber_id: Recipient.
            kind: "recommendation", "trade" or "redemption".
            payload: Event details (strings and numbers only).
        """
        pass


class LoggingNotifier(Notifier):
    """Writes events to the log. Default when no channel is configured."""

    async def notify(self, subscriber_id: str, kind: str, payload: dict[str, Any]) -> None:
        logger.info(f"[{kind.upper()}] {subscriber_id}: {payload}")
