"""Tests for the outbound message queue."""

from authcore.core.messaging import CHANNEL_EMAIL, InMemoryMessageQueue, OutboundMessage


def test_enqueue_and_drain():
    queue = InMemoryMessageQueue()
    message = OutboundMessage(channel=CHANNEL_EMAIL, recipient="a@example.com", body="hi")

    queue.enqueue(message)

    assert queue.drain() == [message]
    assert queue.messages == []
