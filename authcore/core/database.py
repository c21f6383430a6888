"""Database connection and session management."""

from contextlib import contextmanager
from typing import Any, Generator, Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from authcore.config import get_settings
from authcore.models import Base


def build_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Create an engine; SQLite gets explicit BEGIN so SAVEPOINT behaves."""
    settings = get_settings()
    url = database_url or settings.database_url
    echo = settings.database_echo if echo is None else echo

    if "sqlite" in url:
        engine = create_engine(url, echo=echo)

        # pysqlite defers BEGIN on its own; take over so nested
        # transactions roll back correctly.
        @event.listens_for(engine, "connect")
        def _do_connect(dbapi_connection: Any, connection_record: Any) -> None:
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _do_begin(conn: Any) -> None:
            conn.exec_driver_sql("BEGIN")

        return engine

    return create_engine(
        url,
        pool_size=20,
        max_overflow=40,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=echo,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    """Session factory used by the request layer."""
    return sessionmaker(
        bind=engine,
        class_=Session,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@contextmanager
def get_db(factory: sessionmaker) -> Generator[Session, None, None]:
    """One unit of work: commit on success, roll back on any store error."""
    db = factory()
    try:
        yield db
        db.commit()
    except (DataError, IntegrityError, SQLAlchemyError):
        db.rollback()
        raise
    finally:
        db.close()


def init_db(engine: Engine) -> None:
    """Initialize database with tables."""
    Base.metadata.create_all(bind=engine)


def drop_db(engine: Engine) -> None:
    """Drop all database tables (use with caution)."""
    Base.metadata.drop_all(bind=engine)
