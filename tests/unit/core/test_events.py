"""Tests for domain events."""

from authcore.core.events import USER_CREATED, USER_UPDATED, EventBus, EventRecorder
from authcore.models import User


def test_emit_strips_hidden_fields():
    """Payloads never carry password material."""
    bus = EventBus()
    recorder = EventRecorder(bus)

    bus.emit(USER_CREATED, User(id="u1", email="a@example.com", password="hash"), actor_id="u1")

    event = recorder.events[0]
    assert event.name == USER_CREATED
    assert event.actor_id == "u1"
    assert event.payload["email"] == "a@example.com"
    assert "password" not in event.payload
    assert "permissions" not in event.payload


def test_named_and_wildcard_subscribers():
    bus = EventBus()
    named = []
    recorder = EventRecorder(bus)
    bus.subscribe(USER_UPDATED, named.append)

    bus.emit(USER_CREATED, User(id="u1"))
    bus.emit(USER_UPDATED, User(id="u1"))

    assert [event.name for event in named] == [USER_UPDATED]
    assert recorder.names() == [USER_CREATED, USER_UPDATED]
