"""Base model classes for database models."""

from datetime import datetime
from typing import Any, Dict, Iterable, List

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

from authcore.models.db_types import StringList
from authcore.utils.clock import utcnow
from authcore.utils.id_generator import unique_id

Base: Any = declarative_base()


class TimestampMixin:
    """Mixin for adding timestamp fields to models."""

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class BaseModel(Base, TimestampMixin):
    """Base model class with common fields.

    ``permissions`` holds strings such as ``read("user:abc")`` that the
    document store checks against the caller's roles.
    """

    __abstract__ = True

    # Fields never returned by to_dict()
    __hidden__: Iterable[str] = ()

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=unique_id, nullable=False
    )
    permissions: Mapped[List[str]] = mapped_column(StringList, default=list)

    def __init__(self, **kwargs: Any) -> None:
        """Initialize base model."""
        super().__init__(**kwargs)
        if not self.id:
            self.id = unique_id()
        if self.permissions is None:
            self.permissions = []

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary, leaving out hidden fields."""
        result: Dict[str, Any] = {}
        for column in self.__table__.columns:
            if column.name in self.__hidden__ or column.name == "permissions":
                continue
            value = getattr(self, column.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            result[column.name] = value
        return result
