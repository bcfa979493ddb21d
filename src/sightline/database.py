"""Database engine setup and column types."""

import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sqlalchemy import DateTime, SmallInteger, event
from sqlalchemy.engine import Engine
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, create_engine

from sightline.config import settings


def make_engine(url: str) -> Engine:
    return create_engine(url, echo=False, connect_args={"check_same_thread": False})


@event.listens_for(Engine, "connect")
def _register_sqlite_functions(dbapi_connection: Any, connection_record: Any) -> None:
    """Expose Python's str.casefold to SQLite as casefold(); its lower() is ASCII-only."""
    if isinstance(dbapi_connection, sqlite3.Connection):
        dbapi_connection.create_function("casefold", 1, _casefold, deterministic=True)


def _casefold(value: str | None) -> str | None:
    return value.casefold() if value is not None else None


engine = make_engine(f"sqlite:///{settings.db_path}")


def init_db(bind: Engine | None = None) -> None:
    """Create all tables, and the SQLite file's directory if needed."""
    # Import models to register them with SQLModel before create_all()
    import sightline.registry.models  # noqa: F401

    if bind is None:
        bind = engine
    if bind.url.get_backend_name() == "sqlite" and bind.url.database not in (None, "", ":memory:"):
        Path(bind.url.database).parent.mkdir(parents=True, exist_ok=True)
    SQLModel.metadata.create_all(bind)


class UTCDateTime(TypeDecorator[datetime]):
    """Store datetimes as naive UTC, return them tz-aware.

    SQLite drops tzinfo, so values are normalized on the way in and
    re-tagged as UTC on the way out.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


class IntEnumType(TypeDecorator[Any]):
    """Persist an IntEnum as a small integer."""

    impl = SmallInteger
    cache_ok = True

    def __init__(self, enum_class: type, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.enum_class = enum_class

    def process_bind_param(self, value: Any, dialect: Any) -> int | None:
        if value is None:
            return None
        return int(value)

    def process_result_value(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        return self.enum_class(value)
