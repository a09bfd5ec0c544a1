"""Database engine setup.

SQLite is the default store: WAL journaling for concurrent readers and
foreign keys enforced, so link rows can never point at a deleted owner.
In-memory SQLite databases use a single static connection shared across
threads; the executor serializes access to it.

SQLAlchemy Core (not the ORM) is used: fluentorm owns entity mapping and
only needs tables, statements and connections from SQLAlchemy.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

if TYPE_CHECKING:
    from fluentorm.config.settings import OrmSettings
    from fluentorm.infrastructure.database.registry import SchemaRegistry


def create_db_engine(
    url: str = "sqlite:///:memory:",
    *,
    echo: bool = False,
    wal: bool = True,
    foreign_keys: bool = True,
) -> Engine:
    """Create an engine for *url*.

    For SQLite URLs the parent directory of the database file is created
    and the ``journal_mode`` / ``foreign_keys`` pragmas are applied on
    every new DBAPI connection.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, echo=echo)

    database = parsed.database or ""
    in_memory = database in ("", ":memory:") or database.startswith("file::memory:")

    if in_memory:
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        Path(database).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(url, echo=echo)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn: Any, _: Any) -> None:
        cursor = dbapi_conn.cursor()
        if wal and not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA foreign_keys={'ON' if foreign_keys else 'OFF'}")
        cursor.close()

    return engine


def engine_from_settings(settings: OrmSettings) -> Engine:
    """Create the engine described by the ``[database]`` settings section."""
    db = settings.database
    return create_db_engine(db.url, echo=db.echo, wal=db.wal, foreign_keys=db.foreign_keys)


def create_all(engine: Engine, registry: SchemaRegistry) -> None:
    """Create every registered table (and link table) that does not exist yet.

    Idempotent; safe to call on an existing database.
    """
    registry.metadata.create_all(engine)
