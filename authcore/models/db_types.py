"""Database type compatibility layer for PostgreSQL and SQLite."""

from typing import Any, Type

from sqlalchemy import JSON, TypeDecorator
from sqlalchemy.dialects.postgresql import JSONB as PostgreSQLJSONB


class StringList(TypeDecorator):
    """Ordered list of strings stored as JSON; NULL loads as an empty list."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Any) -> Any:
        """Use JSONB where the backend has it."""
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PostgreSQLJSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        """Process value before binding to database."""
        if value is None:
            return []
        return [str(item) for item in value]

    def process_result_value(self, value: Any, dialect: Any) -> Any:
        """Process value when loading from database."""
        return list(value) if value is not None else []

    @property
    def python_type(self) -> Type[list]:
        """Python type."""
        return list


class StringMap(TypeDecorator):
    """Schemaless key/value map stored as JSON; NULL loads as an empty dict."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Any) -> Any:
        """Use JSONB where the backend has it."""
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PostgreSQLJSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        """Process value before binding to database."""
        return dict(value) if value is not None else {}

    def process_result_value(self, value: Any, dialect: Any) -> Any:
        """Process value when loading from database."""
        return dict(value) if value is not None else {}

    @property
    def python_type(self) -> Type[dict]:
        """Python type."""
        return dict
