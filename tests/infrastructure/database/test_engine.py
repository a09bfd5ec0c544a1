"""Tests for database engine setup."""

from __future__ import annotations

import threading
from pathlib import Path

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from fluentorm.config.settings import OrmSettings
from fluentorm.demo import User
from fluentorm.infrastructure.database.engine import (
    create_all,
    create_db_engine,
    engine_from_settings,
)
from fluentorm.infrastructure.database.registry import SchemaRegistry


class TestCreateDbEngine:
    def test_in_memory_by_default(self) -> None:
        engine = create_db_engine()
        assert isinstance(engine.pool, StaticPool)
        engine.dispose()

    def test_in_memory_shared_across_threads(self, db_engine: Engine) -> None:
        with db_engine.begin() as conn:
            conn.execute(text("CREATE TABLE t (x INTEGER)"))
            conn.execute(text("INSERT INTO t VALUES (1)"))

        seen: list[int] = []

        def read() -> None:
            with db_engine.connect() as conn:
                seen.append(conn.execute(text("SELECT x FROM t")).scalar_one())

        thread = threading.Thread(target=read)
        thread.start()
        thread.join()
        assert seen == [1]

    def test_wal_mode_enabled(self, tmp_path: Path) -> None:
        engine = create_db_engine(f"sqlite:///{tmp_path / 'test.db'}")
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA journal_mode")).scalar() == "wal"
        engine.dispose()

    def test_wal_can_be_disabled(self, tmp_path: Path) -> None:
        engine = create_db_engine(f"sqlite:///{tmp_path / 'test.db'}", wal=False)
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA journal_mode")).scalar() != "wal"
        engine.dispose()

    def test_foreign_keys_enabled(self, db_engine: Engine) -> None:
        with db_engine.connect() as conn:
            assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1

    def test_foreign_keys_can_be_disabled(self) -> None:
        engine = create_db_engine(foreign_keys=False)
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 0
        engine.dispose()

    def test_creates_parent_directory(self, tmp_path: Path) -> None:
        db_path = tmp_path / "nested" / "dir" / "app.db"
        engine = create_db_engine(f"sqlite:///{db_path}")
        with engine.connect():
            pass
        engine.dispose()
        assert db_path.parent.is_dir()
        assert db_path.exists()


class TestEngineFromSettings:
    def test_uses_database_section(self, tmp_path: Path) -> None:
        url = f"sqlite:///{tmp_path / 'settings.db'}"
        settings = OrmSettings.load(start=tmp_path, database={"url": url, "echo": True})
        engine = engine_from_settings(settings)
        assert str(engine.url) == url
        assert engine.echo is True
        engine.dispose()


class TestCreateAll:
    def test_creates_registered_tables(self, db_engine: Engine, registry: SchemaRegistry) -> None:
        registry.register(User)
        create_all(db_engine, registry)
        tables = set(inspect(db_engine).get_table_names())
        assert tables == {"cat", "dog", "user", "user_dogs"}

    def test_idempotent(self, db_engine: Engine, registry: SchemaRegistry) -> None:
        registry.register(User)
        create_all(db_engine, registry)
        create_all(db_engine, registry)
        assert "user" in inspect(db_engine).get_table_names()
