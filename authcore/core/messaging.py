"""Outbound mail and SMS boundary.

The core only enqueues; delivery, retries and templates belong to the worker
draining the queue.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol

from authcore.utils.logging import get_logger

logger = get_logger(__name__)

CHANNEL_EMAIL = "email"
CHANNEL_SMS = "sms"


@dataclass(frozen=True)
class OutboundMessage:
    """One email or SMS waiting for delivery."""

    channel: str
    recipient: str
    body: str
    subject: str = ""
    template: str = ""
    variables: Dict[str, Any] = field(default_factory=dict)


class MessageQueue(Protocol):
    """Anything that accepts messages for later delivery."""

    def enqueue(self, message: OutboundMessage) -> None:
        """Hand a message to the queue without waiting for delivery."""


class InMemoryMessageQueue:
    """Queue that keeps messages in a list."""

    def __init__(self) -> None:
        """Initialize empty queue."""
        self.messages: List[OutboundMessage] = []

    def enqueue(self, message: OutboundMessage) -> None:
        """Store the message."""
        logger.info(
            "Message enqueued",
            extra={"channel": message.channel, "template": message.template},
        )
        self.messages.append(message)

    def drain(self) -> List[OutboundMessage]:
        """Return and clear everything queued so far."""
        drained, self.messages = self.messages, []
        return drained
