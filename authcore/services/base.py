"""Base service class for common functionality."""

from typing import Any, Optional, Type, TypeVar

from sqlalchemy.orm import Session

from authcore.config import ProjectPolicy, get_settings
from authcore.core.context import CallerContext
from authcore.core.detector import GeoLocator
from authcore.core.events import EventBus
from authcore.core.messaging import InMemoryMessageQueue, MessageQueue
from authcore.core.store import DocumentStore
from authcore.models import User
from authcore.models.base import BaseModel
from authcore.utils.clock import Clock, utcnow
from authcore.utils.exceptions import NotFoundException
from authcore.utils.logging import get_logger

S = TypeVar("S", bound="BaseService")

logger = get_logger(__name__)


class BaseService:
    """Shared wiring: store, tenant policy, events, outbound queue and clock."""

    def __init__(
        self,
        db: Session,
        policy: Optional[ProjectPolicy] = None,
        events: Optional[EventBus] = None,
        queue: Optional[MessageQueue] = None,
        clock: Clock = utcnow,
        geo: Optional[GeoLocator] = None,
        **extras: Any,
    ):
        """Initialize service with database session and collaborators."""
        self.db = db
        self.store = DocumentStore(db)
        self.policy = policy or ProjectPolicy.from_settings(get_settings())
        self.events = events or EventBus()
        self.queue = queue if queue is not None else InMemoryMessageQueue()
        self.clock = clock
        self.geo = geo or GeoLocator(get_settings().geoip_database_path)
        self._extras = extras

    def sibling(self, service_class: Type[S]) -> S:
        """Another service sharing this one's collaborators."""
        return service_class(
            self.db,
            policy=self.policy,
            events=self.events,
            queue=self.queue,
            clock=self.clock,
            geo=self.geo,
            **self._extras,
        )

    def now(self) -> Any:
        return self.clock()

    def get_user(self, ctx: CallerContext, user_id: Optional[str]) -> User:
        """Load a user regardless of record permissions.

        Raises:
            NotFoundException: no such user
        """
        user = self.store.get(User, user_id, ctx.skip())
        if user is None:
            raise NotFoundException("User with the requested ID could not be found.", "user_not_found")
        return user

    def emit(self, name: str, entity: BaseModel, ctx: CallerContext) -> None:
        self.events.emit(name, entity, actor_id=ctx.user_id)
