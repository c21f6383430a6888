"""Domain events.

Services emit an event after every state change; subscribers (audit,
notifications, webhooks) fan out from here. The payload is the mutated entity
with hidden fields removed, plus the id of the acting user.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from authcore.models.base import BaseModel
from authcore.utils.clock import utcnow
from authcore.utils.logging import audit_logger, get_logger

logger = get_logger(__name__)

USER_CREATED = "user.created"
USER_UPDATED = "user.updated"
USER_DELETED = "user.deleted"
SESSION_CREATED = "session.created"
SESSION_UPDATED = "session.updated"
SESSION_DELETED = "session.deleted"
TOKEN_CREATED = "token.created"
TOKEN_CONSUMED = "token.consumed"
TARGET_CREATED = "target.created"
IDENTITY_CREATED = "identity.created"
IDENTITY_DELETED = "identity.deleted"
AUTHENTICATOR_CREATED = "mfa.authenticator.created"
AUTHENTICATOR_VERIFIED = "mfa.authenticator.verified"
AUTHENTICATOR_DELETED = "mfa.authenticator.deleted"
CHALLENGE_CREATED = "mfa.challenge.created"
CHALLENGE_VERIFIED = "mfa.challenge.verified"
RECOVERY_CODES_CREATED = "mfa.recovery_codes.created"
RECOVERY_CODES_UPDATED = "mfa.recovery_codes.updated"


@dataclass
class DomainEvent:
    """Something that happened to an entity."""

    name: str
    payload: Dict[str, Any]
    actor_id: Optional[str] = None
    occurred_at: Any = field(default_factory=utcnow)


Handler = Callable[[DomainEvent], None]


class EventBus:
    """Synchronous in-process publisher."""

    def __init__(self) -> None:
        """Initialize with no subscribers."""
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, name: str, handler: Handler) -> None:
        """Register ``handler`` for ``name``; ``*`` receives everything."""
        self._handlers[name].append(handler)

    def emit(self, name: str, entity: BaseModel, actor_id: Optional[str] = None) -> DomainEvent:
        """Publish an event for ``entity``."""
        event = DomainEvent(name=name, payload=entity.to_dict(), actor_id=actor_id)
        audit_logger.log_event(name, actor_id, event.payload)
        for handler in [*self._handlers.get(name, []), *self._handlers.get("*", [])]:
            handler(event)
        return event


class EventRecorder:
    """Subscriber that keeps every event; handy for tests and replays."""

    def __init__(self, bus: Optional[EventBus] = None) -> None:
        """Optionally attach to ``bus`` straight away."""
        self.events: List[DomainEvent] = []
        if bus is not None:
            bus.subscribe("*", self)

    def __call__(self, event: DomainEvent) -> None:
        self.events.append(event)

    def names(self) -> List[str]:
        """Event names in emission order."""
        return [event.name for event in self.events]
