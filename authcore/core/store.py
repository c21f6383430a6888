"""Document store over a SQLAlchemy session.

Services talk to persistence only through this class. Reads hide records the
caller may not read; writes check update/delete permission unless the context
is elevated. Unique-constraint violations surface as ``DuplicateException``;
callers may pre-check for a friendlier early exit, but only the constraint is
authoritative and a concurrent writer can still win the race between the two.
"""

from typing import List, Optional, Type, TypeVar

from sqlalchemy import ColumnElement, func, select
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from authcore.core.context import CallerContext, Permission
from authcore.models.base import BaseModel
from authcore.utils.exceptions import DuplicateException, UnauthorizedException
from authcore.utils.logging import get_logger

T = TypeVar("T", bound=BaseModel)

logger = get_logger(__name__)


class DocumentStore:
    """CRUD primitives with per-record permissions."""

    def __init__(self, session: Session):
        """Initialize store with database session."""
        self.session = session

    def get(self, model: Type[T], record_id: Optional[str], ctx: CallerContext) -> Optional[T]:
        """Fetch one record by id, or None when absent or unreadable."""
        if not record_id:
            return None
        record = self.session.get(model, record_id)
        if record is None or not ctx.allows(Permission.READ, record.permissions):
            return None
        return record

    def find(
        self,
        model: Type[T],
        ctx: CallerContext,
        *filters: ColumnElement[bool],
        limit: Optional[int] = None,
    ) -> List[T]:
        """Return readable records matching every filter, oldest first."""
        stmt = select(model).where(*filters).order_by(model.created_at, model.id)
        if limit is not None and ctx.elevated:
            stmt = stmt.limit(limit)
        records = [
            record
            for record in self.session.scalars(stmt)
            if ctx.allows(Permission.READ, record.permissions)
        ]
        return records[:limit] if limit is not None else records

    def find_one(
        self, model: Type[T], ctx: CallerContext, *filters: ColumnElement[bool]
    ) -> Optional[T]:
        """First readable record matching every filter."""
        found = self.find(model, ctx, *filters, limit=1)
        return found[0] if found else None

    def count(
        self,
        model: Type[T],
        ctx: CallerContext,
        *filters: ColumnElement[bool],
        max_count: Optional[int] = None,
    ) -> int:
        """Count readable records, optionally stopping at ``max_count``."""
        if ctx.elevated:
            stmt = select(func.count()).select_from(model).where(*filters)
            total = int(self.session.scalar(stmt) or 0)
        else:
            total = len(self.find(model, ctx, *filters))
        return min(total, max_count) if max_count else total

    def create(self, record: T, ctx: CallerContext) -> T:
        """Insert a record inside a savepoint.

        Raises:
            DuplicateException: a unique constraint rejected the row
        """
        try:
            with self.session.begin_nested():
                self.session.add(record)
            return record
        except IntegrityError as e:
            logger.warning(
                "Duplicate document rejected",
                extra={
                    "collection": record.__tablename__,
                    "error_type": "IntegrityError",
                },
            )
            raise DuplicateException(
                f"Duplicate {record.__tablename__} document"
            ) from e
        except (SQLAlchemyError, DataError) as e:
            logger.error(
                "Database error creating document",
                exc_info=True,
                extra={
                    "collection": record.__tablename__,
                    "error_type": type(e).__name__,
                    "error_details": str(e),
                },
            )
            raise RuntimeError(f"Failed to create document: {str(e)}") from e

    def update(self, record: T, ctx: CallerContext) -> T:
        """Flush pending changes on ``record``.

        Raises:
            UnauthorizedException: caller lacks update permission
            DuplicateException: a unique constraint rejected the change
        """
        if not ctx.allows(Permission.UPDATE, record.permissions):
            raise UnauthorizedException()
        try:
            with self.session.begin_nested():
                self.session.add(record)
            return record
        except IntegrityError as e:
            raise DuplicateException(
                f"Duplicate {record.__tablename__} document"
            ) from e
        except (SQLAlchemyError, DataError) as e:
            logger.error(
                "Database error updating document",
                exc_info=True,
                extra={
                    "collection": record.__tablename__,
                    "record_id": record.id,
                    "error_type": type(e).__name__,
                    "error_details": str(e),
                },
            )
            raise RuntimeError(f"Failed to update document: {str(e)}") from e

    def delete(self, record: BaseModel, ctx: CallerContext) -> None:
        """Delete a record (and its ORM cascades)."""
        if not ctx.allows(Permission.DELETE, record.permissions):
            raise UnauthorizedException()
        try:
            self.session.delete(record)
            self.session.flush()
        except (SQLAlchemyError, DataError) as e:
            logger.error(
                "Database error deleting document",
                exc_info=True,
                extra={
                    "collection": record.__tablename__,
                    "record_id": record.id,
                    "error_type": type(e).__name__,
                    "error_details": str(e),
                },
            )
            raise RuntimeError(f"Failed to delete document: {str(e)}") from e

    def purge_cache(self, model: Type[T], record_id: str) -> None:
        """Drop the cached copy so the next read hits the database."""
        record = self.session.identity_map.get(identity_key(model, record_id))
        if record is not None and record not in self.session.dirty:
            self.session.expire(record)
